from datetime import datetime
from decimal import Decimal

import pytest

from splitledger.models import Expense, Member


def make_expense(amount, payer, involved, day=1, at=None, **kwargs):
    return Expense(
        amount=Decimal(str(amount)),
        payer=payer,
        involved=list(involved),
        occurred_at=at or datetime(2024, 1, day),
        **kwargs,
    )


@pytest.fixture
def members():
    return [Member("a", "Alice", "admin"), Member("b", "Bob"), Member("c", "Cara")]
