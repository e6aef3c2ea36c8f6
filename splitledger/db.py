from contextlib import contextmanager
from typing import Any, Dict, Iterable, List, Optional

import mysql.connector
from mysql.connector import pooling

from .config import config
from .models import Expense, Group, Member, MemberRef


class Database:
    def __init__(self) -> None:
        self._pool: Optional[pooling.MySQLConnectionPool] = None

    @property
    def pool(self) -> pooling.MySQLConnectionPool:
        if self._pool is None:
            self._pool = pooling.MySQLConnectionPool(
                pool_name="splitledger_pool",
                pool_size=config.DB_POOL_SIZE,
                host=config.DB_HOST,
                port=config.DB_PORT,
                user=config.DB_USER,
                password=config.DB_PASSWORD,
                database=config.DB_NAME,
                auth_plugin="mysql_native_password",
            )
        return self._pool

    @contextmanager
    def connection(self):
        conn = self.pool.get_connection()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def cursor(self, dictionary: bool = True):
        with self.connection() as conn:
            cursor = conn.cursor(dictionary=dictionary)
            try:
                yield cursor
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                cursor.close()

    def fetch_one(self, query: str, params: Optional[Iterable[Any]] = None) -> Optional[Dict[str, Any]]:
        with self.cursor() as cursor:
            cursor.execute(query, params or ())
            return cursor.fetchone()

    def fetch_all(self, query: str, params: Optional[Iterable[Any]] = None) -> Iterable[Dict[str, Any]]:
        with self.cursor() as cursor:
            cursor.execute(query, params or ())
            return cursor.fetchall()


db = Database()

StoreError = mysql.connector.Error


def fetch_group(group_id: str) -> Optional[Group]:
    group = db.fetch_one(
        "SELECT id, group_name, currency FROM `groups` WHERE id=%s",
        (group_id,),
    )
    if not group:
        return None

    rows = db.fetch_all(
        """
        SELECT u.id, u.name, gm.role
        FROM group_members gm
        JOIN users u ON gm.user_id = u.id
        WHERE gm.group_id=%s
        ORDER BY gm.id
        """,
        (group_id,),
    )
    members = [Member(str(row["id"]), row["name"], row.get("role") or "member") for row in rows]
    admin_id = next((member.id for member in members if member.role == "admin"), None)

    return Group(
        id=str(group["id"]),
        name=group["group_name"],
        members=members,
        admin_id=admin_id,
        currency=group.get("currency") or "USD",
    )


def fetch_member_group_ids(member_id: str) -> List[str]:
    rows = db.fetch_all(
        """
        SELECT gm.group_id
        FROM group_members gm
        JOIN `groups` g ON gm.group_id = g.id
        WHERE gm.user_id=%s
        ORDER BY g.group_name
        """,
        (member_id,),
    )
    return [str(row["group_id"]) for row in rows]


def _member_ref(user_id: Any, name: Optional[str]) -> MemberRef:
    # Legacy rows carry only the member's name
    if user_id not in (None, ""):
        return str(user_id)
    return name or ""


def fetch_expenses(group_id: str) -> List[Expense]:
    rows = db.fetch_all(
        """
        SELECT id, description, type, amount, paid_by_user_id, paid_by_name, occurred_at
        FROM expenses
        WHERE group_id=%s
        ORDER BY occurred_at, id
        """,
        (group_id,),
    )
    expenses = list(rows)
    if not expenses:
        return []

    expense_ids = [row["id"] for row in expenses]
    placeholders = ", ".join(["%s"] * len(expense_ids))
    involved_rows = db.fetch_all(
        f"""
        SELECT expense_id, user_id, name
        FROM expense_involved
        WHERE expense_id IN ({placeholders})
        ORDER BY expense_id, position
        """,
        expense_ids,
    )
    involved_map: Dict[Any, List[MemberRef]] = {}
    for row in involved_rows:
        involved_map.setdefault(row["expense_id"], []).append(_member_ref(row["user_id"], row["name"]))

    return [
        Expense(
            id=str(row["id"]),
            amount=row["amount"],
            payer=_member_ref(row["paid_by_user_id"], row["paid_by_name"]),
            involved=involved_map.get(row["id"], []),
            occurred_at=row["occurred_at"],
            description=row.get("description") or "",
            type=row.get("type") or "Other",
        )
        for row in expenses
    ]
