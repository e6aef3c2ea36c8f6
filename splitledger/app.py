from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from functools import wraps
from typing import Any, Dict, List, Optional

from flask import Flask, current_app, jsonify, request
from flask_cors import CORS

from . import db as store
from .balances import (
    ZERO,
    compute_balances,
    describe_position,
    expense_delta_for,
    member_summary,
    period_total,
    to_decimal,
    to_display,
    total_owed_by_group,
    total_owed_to_group,
)
from .config import config
from .models import Expense, Group, Member, ResolutionDiagnostics
from .settlement import compute_group_transfers, compute_settlements_for

MAX_AMOUNT = Decimal("1000000000000")


def create_app() -> Flask:
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = Flask(__name__)
    app.config["SECRET_KEY"] = config.SECRET_KEY

    CORS(
        app,
        resources={r"/api/*": {"origins": config.CORS_ORIGINS}},
    )

    register_routes(app)
    return app


def with_group(func):
    """Load the group snapshot and pass it to the view as ``group``."""
    @wraps(func)
    def wrapper(group_id: str, *args, **kwargs):
        try:
            group = store.fetch_group(group_id)
        except store.StoreError:
            current_app.logger.exception("Failed to load group %s", group_id)
            return jsonify({"error": "store_unavailable"}), 500
        if group is None:
            return jsonify({"error": "group_not_found"}), 404
        return func(group, *args, **kwargs)

    return wrapper


def register_routes(app: Flask) -> None:
    def load_expenses(group: Group) -> Optional[List[Expense]]:
        try:
            return store.fetch_expenses(group.id)
        except store.StoreError:
            app.logger.exception("Failed to load expenses for group %s", group.id)
            return None

    @app.get("/api/health")
    def health_check():
        return jsonify({"status": "ok"})

    @app.get("/api/groups/<group_id>/balances")
    @with_group
    def get_group_balances(group: Group):
        expenses = load_expenses(group)
        if expenses is None:
            return jsonify({"error": "store_unavailable"}), 500

        diagnostics = ResolutionDiagnostics()
        balances = compute_balances(expenses, group.members, diagnostics)
        now = datetime.now()

        return jsonify(
            {
                "group_id": group.id,
                "currency": group.currency,
                "balances": _serialize_balances(balances, group.members),
                "total_owe": _money(total_owed_by_group(balances)),
                "total_owed": _money(total_owed_to_group(balances)),
                "spent_this_week": _money(period_total(expenses, "week", now)),
                "spent_this_month": _money(period_total(expenses, "month", now)),
                "dropped_references": diagnostics.dropped,
            }
        )

    @app.get("/api/groups/<group_id>/settlements/<member_id>")
    @with_group
    def get_member_settlements(group: Group, member_id: str):
        if group.member(member_id) is None:
            return jsonify({"error": "member_not_found"}), 404

        expenses = load_expenses(group)
        if expenses is None:
            return jsonify({"error": "store_unavailable"}), 500

        balances = compute_balances(expenses, group.members)
        settlements = compute_settlements_for(balances, member_id, group.members)
        net = balances[member_id]

        return jsonify(
            {
                "member_id": member_id,
                "net": _money(net),
                "position": describe_position(to_display(net)),
                "settlements": _serialize_settlements(settlements, group.members),
            }
        )

    @app.get("/api/groups/<group_id>/transfers")
    @with_group
    def get_group_transfers(group: Group):
        expenses = load_expenses(group)
        if expenses is None:
            return jsonify({"error": "store_unavailable"}), 500

        balances = compute_balances(expenses, group.members)
        transfers = compute_group_transfers(balances)
        return jsonify({"transfers": _serialize_transfers(transfers, group.members)})

    @app.get("/api/groups/<group_id>/expenses")
    @with_group
    def get_group_expenses(group: Group):
        expenses = load_expenses(group)
        if expenses is None:
            return jsonify({"error": "store_unavailable"}), 500

        member_id = request.headers.get("X-Member-Id")
        if member_id and group.member(member_id) is None:
            return jsonify({"error": "member_not_found"}), 404

        payload = []
        for expense in expenses:
            item = {
                "id": expense.id,
                "description": expense.description,
                "type": expense.type,
                "amount": _money(to_decimal(expense.amount)),
                "paid_by": expense.payer,
                "involved": list(expense.involved),
                "date": expense.occurred_at.isoformat() if expense.occurred_at else None,
            }
            if member_id:
                item["delta"] = _money(expense_delta_for(expense, member_id, group.members))
            payload.append(item)

        return jsonify(payload)

    @app.get("/api/members/<member_id>/dashboard")
    def get_member_dashboard(member_id: str):
        try:
            snapshots = []
            for group_id in store.fetch_member_group_ids(member_id):
                group = store.fetch_group(group_id)
                if group is not None:
                    snapshots.append((group, store.fetch_expenses(group.id)))
        except store.StoreError:
            app.logger.exception("Failed to load dashboard for member %s", member_id)
            return jsonify({"error": "store_unavailable"}), 500

        now = datetime.now()
        groups = []
        total_owes = total_owed = spent_week = spent_month = ZERO
        for group, expenses in snapshots:
            summary = member_summary(expenses, member_id, group.members)
            total_owes += summary["owes"]
            total_owed += summary["owed"]
            spent_week += period_total(expenses, "week", now)
            spent_month += period_total(expenses, "month", now)
            groups.append(
                {
                    "group_id": group.id,
                    "name": group.name,
                    "currency": group.currency,
                    "owes": _money(summary["owes"]),
                    "owed": _money(summary["owed"]),
                    "net": _money(summary["net"]),
                    "position": describe_position(to_display(summary["net"])),
                }
            )

        return jsonify(
            {
                "member_id": member_id,
                "groups": groups,
                "total_owes": _money(total_owes),
                "total_owed": _money(total_owed),
                "spent_this_week": _money(spent_week),
                "spent_this_month": _money(spent_month),
            }
        )

    @app.post("/api/balances/compute")
    def compute_snapshot():
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            return jsonify({"error": "invalid_payload"}), 400

        try:
            members = _parse_members(payload.get("members"))
            expenses = _parse_expenses(payload.get("expenses"))
        except ValueError as exc:
            return jsonify({"error": str(exc)}), 400

        diagnostics = ResolutionDiagnostics()
        balances = compute_balances(expenses, members, diagnostics)
        response: Dict[str, Any] = {
            "balances": _serialize_balances(balances, members),
            "transfers": _serialize_transfers(compute_group_transfers(balances), members),
            "dropped_references": diagnostics.dropped,
        }

        focal_id = payload.get("focal_id")
        if focal_id is not None:
            focal_id = str(focal_id)
            if focal_id not in balances:
                return jsonify({"error": "member_not_found"}), 404
            settlements = compute_settlements_for(balances, focal_id, members)
            response["settlements"] = _serialize_settlements(settlements, members)

        return jsonify(response)


def _money(value: Decimal) -> float:
    return float(to_display(value))


def _names(members: List[Member]) -> Dict[str, str]:
    return {member.id: member.display_name for member in members}


def _serialize_balances(balances: Dict[str, Decimal], members: List[Member]) -> List[Dict[str, Any]]:
    names = _names(members)
    return [
        {
            "member_id": member_id,
            "name": names.get(member_id),
            "net": _money(net),
            "position": describe_position(to_display(net)),
        }
        for member_id, net in balances.items()
    ]


def _serialize_settlements(settlements, members: List[Member]) -> List[Dict[str, Any]]:
    names = _names(members)
    return [
        {
            "counterparty_id": entry.counterparty_id,
            "name": names.get(entry.counterparty_id),
            "amount": _money(entry.amount),
            "direction": entry.direction,
        }
        for entry in settlements
    ]


def _serialize_transfers(transfers, members: List[Member]) -> List[Dict[str, Any]]:
    names = _names(members)
    return [
        {
            "from_id": transfer.from_id,
            "from_name": names.get(transfer.from_id),
            "to_id": transfer.to_id,
            "to_name": names.get(transfer.to_id),
            "amount": _money(transfer.amount),
        }
        for transfer in transfers
    ]


def _parse_members(payload: Any) -> List[Member]:
    if not isinstance(payload, list):
        raise ValueError("invalid_payload")

    members: List[Member] = []
    seen = set()
    for item in payload:
        try:
            if item["id"] is None:
                raise ValueError("invalid_member_payload")
            member_id = str(item["id"]).strip()
            name = str(item.get("name") or "").strip()
        except (KeyError, TypeError, AttributeError):
            raise ValueError("invalid_member_payload") from None

        if not member_id:
            raise ValueError("invalid_member_payload")
        if member_id in seen:
            raise ValueError("duplicate_member")

        seen.add(member_id)
        members.append(Member(member_id, name, str(item.get("role") or "member")))
    return members


def _parse_ref(value: Any) -> str:
    # {"user_id": ..., "name": ...} entries prefer the id
    if isinstance(value, dict):
        user_id = value.get("user_id")
        if user_id not in (None, ""):
            return str(user_id)
        return str(value.get("name") or "")
    if value is None:
        return ""
    return str(value)


def _parse_expenses(payload: Any) -> List[Expense]:
    if not isinstance(payload, list):
        raise ValueError("invalid_payload")

    expenses: List[Expense] = []
    for item in payload:
        if not isinstance(item, dict):
            raise ValueError("invalid_expense_payload")

        try:
            amount = to_decimal(item["amount"])
        except (KeyError, TypeError, ValueError, InvalidOperation):
            raise ValueError("invalid_amount") from None
        if not amount.is_finite() or amount <= 0 or amount > MAX_AMOUNT:
            raise ValueError("invalid_amount")

        involved = item.get("involved") or []
        if not isinstance(involved, list):
            raise ValueError("invalid_expense_payload")

        try:
            occurred_at = datetime.fromisoformat(item["date"]) if item.get("date") else datetime.now(timezone.utc)
        except (TypeError, ValueError):
            raise ValueError("invalid_date") from None

        expenses.append(
            Expense(
                id=str(item["id"]) if item.get("id") is not None else None,
                amount=amount,
                payer=_parse_ref(item.get("paid_by")),
                involved=[_parse_ref(ref) for ref in involved],
                occurred_at=occurred_at,
                description=str(item.get("description") or ""),
                type=str(item.get("type") or "Other"),
            )
        )
    return expenses


app = create_app()


if __name__ == "__main__":
    app.run(debug=True)
