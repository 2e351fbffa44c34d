"""Per-user balances across all recorded bar nights.

A positive balance means the user is owed money, a negative one means they
owe. Shares are recomputed here from each night's total and participant list;
the ``share_amount`` values persisted on the write path are never read.
"""

from __future__ import annotations

from decimal import Decimal
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Sequence

from .models import BarNight, Profile

ZERO = Decimal("0")


def _charge(balances: Dict[int, Decimal], participants: Sequence[Profile], amount: Decimal) -> None:
    count = len(participants)
    if count == 0:
        return
    share = amount / count
    for participant in participants:
        balances[participant.user_id] = balances.get(participant.user_id, ZERO) - share


def _apply_night(balances: Dict[int, Decimal], night: BarNight) -> None:
    # A night nobody took part in is ignored, payments included
    if not night.participants:
        return
    _charge(balances, night.participants, night.total_amount)

    for payment in night.payments:
        balances[payment.payer_id] = balances.get(payment.payer_id, ZERO) + payment.amount

    # Item participants need not be night participants
    for item in night.individual_items:
        _charge(balances, item.participants, item.amount)


def compute_balances(users: Iterable[Profile], nights: Iterable[BarNight]) -> Mapping[int, Decimal]:
    """Return the signed balance of every known user.

    Users that appear in no night keep a balance of exactly zero. Amounts are
    not validated or rounded; whatever the records hold is summed as-is.
    """
    known = [user.user_id for user in users]
    balances: Dict[int, Decimal] = {user_id: ZERO for user_id in known}

    for night in nights:
        _apply_night(balances, night)

    return MappingProxyType({user_id: balances[user_id] for user_id in known})


def user_balances(profiles: Sequence[Profile], nights: Iterable[BarNight]) -> List[Dict[str, Any]]:
    balances = compute_balances(profiles, nights)
    return [{"user": profile, "balance": balances[profile.user_id]} for profile in profiles]
