"""Read-side records for bar nights, as returned by the ledger store."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class Profile:
    user_id: int
    display_name: str
    email: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"user_id": self.user_id, "display_name": self.display_name, "email": self.email}


@dataclass(frozen=True)
class Payment:
    payer: Profile
    amount: Decimal

    @property
    def payer_id(self) -> int:
        return self.payer.user_id

    def to_dict(self) -> Dict[str, Any]:
        return {"payer_id": self.payer_id, "amount": float(self.amount), "payer": self.payer.to_dict()}


@dataclass(frozen=True)
class IndividualItem:
    id: int
    description: str
    amount: Decimal
    participants: Tuple[Profile, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "amount": float(self.amount),
            "participants": [p.to_dict() for p in self.participants],
        }


@dataclass(frozen=True)
class BarNight:
    """One outing with everything needed to split its cost."""

    id: int
    name: str
    total_amount: Decimal
    date: date
    created_by: Optional[int]
    participants: Tuple[Profile, ...] = ()
    payments: Tuple[Payment, ...] = ()
    individual_items: Tuple[IndividualItem, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "total_amount": float(self.total_amount),
            "date": self.date.isoformat(),
            "created_by": self.created_by,
            "participants": [p.to_dict() for p in self.participants],
            "payments": [p.to_dict() for p in self.payments],
            "individual_items": [item.to_dict() for item in self.individual_items],
        }
