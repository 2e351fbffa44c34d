from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .config import config


class ValidationError(ValueError):
    """Submitted bar night rejected before anything is written."""

    def __init__(self, code: str) -> None:
        super().__init__(code)
        self.code = code


@dataclass(frozen=True)
class ItemRequest:
    description: str
    amount: Decimal
    participants: Tuple[int, ...]


@dataclass(frozen=True)
class BarNightRequest:
    total_amount: Decimal
    participants: Tuple[int, ...]
    name: str = config.DEFAULT_NIGHT_NAME
    date: Optional[date] = None
    paid_by: Tuple[Tuple[int, Decimal], ...] = ()
    individual_items: Tuple[ItemRequest, ...] = ()

    def referenced_user_ids(self) -> set:
        user_ids = set(self.participants)
        user_ids.update(user_id for user_id, _ in self.paid_by)
        for item in self.individual_items:
            user_ids.update(item.participants)
        return user_ids


def equal_share(amount: Decimal, count: int) -> Decimal:
    if count == 0:
        raise ValueError("count must not be zero")
    return amount / count


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise ValueError("Cannot convert value to Decimal")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        result = Decimal(value.strip())
    else:
        raise ValueError("Cannot convert value to Decimal")
    if not result.is_finite():
        raise ValueError("Amount must be finite")
    return result.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _to_user_id(value: Any) -> int:
    # Floats and bools would silently map onto a different user
    if isinstance(value, bool):
        raise ValueError("invalid user id")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise ValueError("invalid user id")


def _to_user_ids(values: Any) -> Tuple[int, ...]:
    if isinstance(values, (str, bytes)) or not isinstance(values, (list, tuple, set)):
        raise ValueError("participants must be a list")
    user_ids: List[int] = []
    for value in values:
        user_id = _to_user_id(value)
        if user_id not in user_ids:
            user_ids.append(user_id)
    return tuple(user_ids)


def _parse_payments(payload: Any) -> Tuple[Tuple[int, Decimal], ...]:
    if _is_blank(payload):
        return ()
    if not isinstance(payload, Mapping):
        raise ValidationError("invalid_payment")

    payments: Dict[int, Decimal] = {}
    for raw_user_id, raw_amount in payload.items():
        # Empty form fields are simply not payments
        if _is_blank(raw_amount):
            continue
        try:
            user_id = _to_user_id(raw_user_id)
            amount = _to_decimal(raw_amount)
        except (TypeError, ValueError, InvalidOperation):
            raise ValidationError("invalid_payment") from None
        if amount <= 0:
            continue
        payments[user_id] = payments.get(user_id, Decimal("0")) + amount
    return tuple(payments.items())


def _parse_item(item: Any) -> Optional[ItemRequest]:
    if not isinstance(item, Mapping):
        return None
    description = item.get("description")
    if not isinstance(description, str) or not description.strip():
        return None
    try:
        amount = _to_decimal(item.get("amount"))
        participants = _to_user_ids(item.get("participants") or [])
    except (TypeError, ValueError, InvalidOperation):
        return None
    if amount <= 0 or not participants:
        return None
    return ItemRequest(description=description.strip(), amount=amount, participants=participants)


def _parse_date(value: Any) -> Optional[date]:
    if _is_blank(value):
        return None
    try:
        # Accept full ISO timestamps as well as plain dates
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        raise ValidationError("invalid_date") from None


def parse_bar_night_request(payload: Any, require_name: bool = False) -> BarNightRequest:
    """Validate a submitted bar night and normalize it into a request.

    Invalid individual items are dropped instead of failing the request.
    Raises ValidationError with a short error code for everything else.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, Mapping):
        raise ValidationError("invalid_payload")

    raw_total = payload.get("totalAmount")
    if _is_blank(raw_total):
        raise ValidationError("missing_fields")
    try:
        total_amount = _to_decimal(raw_total)
    except (TypeError, ValueError, InvalidOperation):
        raise ValidationError("invalid_amount") from None
    if total_amount <= 0:
        raise ValidationError("invalid_amount")

    raw_name = payload.get("name")
    if isinstance(raw_name, str) and raw_name.strip():
        name = raw_name.strip()
    elif require_name:
        raise ValidationError("missing_name")
    else:
        name = config.DEFAULT_NIGHT_NAME

    raw_participants = payload.get("participants")
    if not raw_participants:
        raise ValidationError("missing_participants")
    try:
        participants = _to_user_ids(raw_participants)
    except (TypeError, ValueError):
        raise ValidationError("invalid_participants") from None

    paid_by = _parse_payments(payload.get("paidBy"))
    if sum((amount for _, amount in paid_by), Decimal("0")) > total_amount:
        raise ValidationError("payments_exceed_total")

    raw_items = payload.get("individualItems") or []
    if not isinstance(raw_items, (list, tuple)):
        raw_items = []
    items = tuple(item for item in (_parse_item(raw) for raw in raw_items) if item is not None)

    return BarNightRequest(
        total_amount=total_amount,
        participants=participants,
        name=name,
        date=_parse_date(payload.get("date")),
        paid_by=paid_by,
        individual_items=items,
    )
