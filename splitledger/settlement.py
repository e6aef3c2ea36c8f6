"""
Settlement of net balances.

``compute_settlements_for`` is the per-member view: it walks the other
members in balances order and matches the focal member's debt or credit
greedily. ``compute_group_transfers`` is the group-wide min-cash-flow
solver. The two are kept apart and do not share state.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List, Sequence

from .balances import ZERO
from .models import OWED, OWES, Member, SettlementEntry, Transfer

logger = logging.getLogger(__name__)


def compute_settlements_for(
    balances: Dict[str, Decimal],
    focal_id: str,
    members: Sequence[Member],
) -> List[SettlementEntry]:
    focal_net = balances.get(focal_id, ZERO)
    if focal_net == 0:
        return []

    creditors = [
        {"member_id": member_id, "amount": net}
        for member_id, net in balances.items()
        if member_id != focal_id and net > 0
    ]
    debtors = [
        {"member_id": member_id, "amount": -net}
        for member_id, net in balances.items()
        if member_id != focal_id and net < 0
    ]

    if focal_net < 0:
        counterparties, direction = creditors, OWES
    else:
        counterparties, direction = debtors, OWED

    settlements: List[SettlementEntry] = []
    remaining = abs(focal_net)
    for counterparty in counterparties:
        if remaining <= 0:
            break
        amount = min(remaining, counterparty["amount"])
        if amount > 0:
            settlements.append(SettlementEntry(counterparty["member_id"], amount, direction))
            remaining -= amount

    # Counterparties removed from the group are not shown
    member_ids = {member.id for member in members}
    visible = [entry for entry in settlements if entry.counterparty_id in member_ids]
    if len(visible) != len(settlements):
        logger.info(
            "Dropped %d settlement entries for %s: counterparty no longer a member",
            len(settlements) - len(visible),
            focal_id,
        )
    return visible


def compute_group_transfers(
    balances: Dict[str, Decimal],
    tolerance: Decimal = Decimal("0.01"),
) -> List[Transfer]:
    """
    Settle the whole group with min-cash-flow pairing.

    The largest creditor is repeatedly paid by the largest debtor until every
    remaining magnitude is within ``tolerance``. Dust debtors still pay a
    creditor that is owed more than ``tolerance``. Ties go to the member that
    comes first in ``balances``.
    """
    creditors: List[Dict[str, Any]] = []
    debtors: List[Dict[str, Any]] = []

    for member_id, net in balances.items():
        if net > 0:
            creditors.append({"member_id": member_id, "amount": net})
        elif net < 0:
            debtors.append({"member_id": member_id, "amount": -net})

    transfers: List[Transfer] = []

    while creditors and debtors:
        creditor = max(creditors, key=lambda entry: entry["amount"])
        debtor = max(debtors, key=lambda entry: entry["amount"])
        if creditor["amount"] <= tolerance and debtor["amount"] <= tolerance:
            break

        settled_amount = min(debtor["amount"], creditor["amount"])
        transfers.append(Transfer(debtor["member_id"], creditor["member_id"], settled_amount))

        debtor["amount"] -= settled_amount
        creditor["amount"] -= settled_amount

        if debtor["amount"] <= 0:
            debtors.remove(debtor)
        if creditor["amount"] <= 0:
            creditors.remove(creditor)

    return transfers
