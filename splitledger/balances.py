"""
Balance aggregation for SplitLedger.

Net balances are recomputed from the full expense list on every call:
positive means the member is owed money, negative means the member owes.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP, localcontext
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .models import OWED, OWES, Expense, Member, MemberRef, ResolutionDiagnostics

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
CENT = Decimal("0.01")


def to_decimal(value: Any) -> Decimal:
    """Convert an amount to Decimal without rounding it."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError("Cannot convert value to Decimal")
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    if isinstance(value, str):
        return Decimal(value.strip())
    raise ValueError("Cannot convert value to Decimal")


def to_display(amount: Decimal) -> Decimal:
    with localcontext() as ctx:
        # Enough digits for the integer part plus cents
        ctx.prec = max(ctx.prec, amount.adjusted() + 3)
        return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def resolve_member_ref(ref: Optional[MemberRef], members: Sequence[Member]) -> Optional[str]:
    """
    Resolve a member reference to a member id.

    An exact id match wins; otherwise the first member whose display name
    matches exactly (case-sensitive) is used. Returns None when neither hits.
    """
    if not ref:
        return None
    for member in members:
        if member.id == ref:
            return member.id
    for member in members:
        if member.display_name == ref:
            return member.id
    return None


def _resolve_or_drop(
    ref: Optional[MemberRef],
    members: Sequence[Member],
    expense: Expense,
    diagnostics: Optional[ResolutionDiagnostics],
) -> Optional[str]:
    member_id = resolve_member_ref(ref, members)
    if member_id is None:
        logger.warning(
            "Dropping unresolved member reference %r (expense=%s, amount=%s)",
            ref,
            expense.id or expense.description or "-",
            expense.amount,
        )
        if diagnostics is not None:
            diagnostics.record(ref)
    return member_id


def compute_balances(
    expenses: Iterable[Expense],
    members: Sequence[Member],
    diagnostics: Optional[ResolutionDiagnostics] = None,
) -> Dict[str, Decimal]:
    """
    Fold ``expenses`` into a net balance per member.

    Every member starts at zero, in member order. The resolved payer is
    credited the full amount and each resolved involved member is debited an
    even share. When no involved reference resolves the share is zero and the
    payer keeps the whole credit. Unresolved references are dropped, logged
    and, if ``diagnostics`` is given, counted.
    """
    balances: Dict[str, Decimal] = {member.id: ZERO for member in members}

    for expense in expenses:
        amount = to_decimal(expense.amount)
        payer_id = _resolve_or_drop(expense.payer, members, expense, diagnostics)
        involved_ids: List[str] = []
        for ref in expense.involved:
            member_id = _resolve_or_drop(ref, members, expense, diagnostics)
            if member_id is not None:
                involved_ids.append(member_id)

        share = amount / len(involved_ids) if involved_ids else ZERO

        if payer_id is not None:
            balances[payer_id] += amount
        for member_id in involved_ids:
            balances[member_id] -= share

    return balances


def expense_delta_for(expense: Expense, member_id: str, members: Sequence[Member]) -> Decimal:
    """How much a single expense moves ``member_id``'s net balance."""
    amount = to_decimal(expense.amount)
    involved_ids = [
        resolved
        for resolved in (resolve_member_ref(ref, members) for ref in expense.involved)
        if resolved is not None
    ]
    share = amount / len(involved_ids) if involved_ids else ZERO
    own_share = share * involved_ids.count(member_id)

    if resolve_member_ref(expense.payer, members) == member_id:
        return amount - own_share
    return -own_share if own_share else ZERO


def member_summary(
    expenses: Iterable[Expense],
    member_id: str,
    members: Sequence[Member],
) -> Dict[str, Decimal]:
    """
    What ``member_id`` owes and is owed in one group.

    Per-expense deltas are split by sign, so ``owed - owes`` equals the
    member's net balance from ``compute_balances``.
    """
    owes = ZERO
    owed = ZERO
    for expense in expenses:
        delta = expense_delta_for(expense, member_id, members)
        if delta > 0:
            owed += delta
        elif delta < 0:
            owes -= delta
    return {"owes": owes, "owed": owed, "net": owed - owes}


def _start_of_week(moment: datetime):
    # Weeks start on Monday
    day = moment.date()
    return day - timedelta(days=day.weekday())


def in_period(moment: datetime, period: str, now: datetime) -> bool:
    if period == "week":
        return _start_of_week(moment) == _start_of_week(now)
    if period == "month":
        return (moment.year, moment.month) == (now.year, now.month)
    raise ValueError(f"Unknown period: {period}")


def period_total(expenses: Iterable[Expense], period: str, now: datetime) -> Decimal:
    """Total spent in the calendar week or month that contains ``now``."""
    return sum(
        (
            to_decimal(expense.amount)
            for expense in expenses
            if expense.occurred_at is not None and in_period(expense.occurred_at, period, now)
        ),
        ZERO,
    )


def total_owed_by_group(balances: Dict[str, Decimal]) -> Decimal:
    return sum((-net for net in balances.values() if net < 0), ZERO)


def total_owed_to_group(balances: Dict[str, Decimal]) -> Decimal:
    return sum((net for net in balances.values() if net > 0), ZERO)


def describe_position(net: Decimal) -> str:
    if net > 0:
        return OWED
    if net < 0:
        return OWES
    return "settled"
