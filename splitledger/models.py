"""
Data models for SplitLedger.

Member references inside an expense are plain strings that hold either a
member id or, for older records, the member's display name.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

MemberRef = str

OWES = "owes"
OWED = "owed"


@dataclass(frozen=True)
class Member:
    id: str
    display_name: str
    role: str = "member"


@dataclass
class Group:
    id: str
    name: str
    members: List[Member] = field(default_factory=list)
    admin_id: Optional[str] = None
    currency: str = "USD"

    def member(self, member_id: str) -> Optional[Member]:
        for member in self.members:
            if member.id == member_id:
                return member
        return None


@dataclass
class Expense:
    """Single shared expense, split evenly across ``involved``"""
    amount: Decimal
    payer: MemberRef
    involved: List[MemberRef]
    occurred_at: datetime
    description: str = ""
    type: str = "Other"
    id: Optional[str] = None


@dataclass(frozen=True)
class SettlementEntry:
    """One transfer between a focal member and ``counterparty_id``"""
    counterparty_id: str
    amount: Decimal
    direction: str  # OWES or OWED, from the focal member's side


@dataclass(frozen=True)
class Transfer:
    from_id: str
    to_id: str
    amount: Decimal


@dataclass
class ResolutionDiagnostics:
    """Collects member references that could not be resolved"""
    dropped: int = 0
    refs: List[Optional[MemberRef]] = field(default_factory=list)

    def record(self, ref: Optional[MemberRef]) -> None:
        self.dropped += 1
        self.refs.append(ref)
