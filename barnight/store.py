from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime
from decimal import Decimal
from functools import wraps
from typing import Any, Dict, Iterable, List, Optional, Sequence

import mysql.connector

from .db import Database, Transaction, db as default_db
from .models import BarNight, IndividualItem, Payment, Profile
from .submission import BarNightRequest, equal_share

logger = logging.getLogger(__name__)

UNKNOWN_NAME = "Unknown"


class StoreError(RuntimeError):
    """The ledger store could not complete a read or write."""


def _translate_errors(func):
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except mysql.connector.Error as exc:
            raise StoreError(f"{func.__name__} failed: {exc}") from exc

    return wrapper


def _placeholders(values: Sequence[Any]) -> str:
    return ", ".join(["%s"] * len(values))


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _as_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _profile_from_row(row: Dict[str, Any], id_key: str) -> Profile:
    return Profile(
        user_id=row[id_key],
        display_name=row.get("display_name") or UNKNOWN_NAME,
        email=row.get("email") or "",
    )


def assemble_bar_nights(
    night_rows: Iterable[Dict[str, Any]],
    participant_rows: Iterable[Dict[str, Any]],
    payment_rows: Iterable[Dict[str, Any]],
    item_rows: Iterable[Dict[str, Any]],
    item_participant_rows: Iterable[Dict[str, Any]],
) -> List[BarNight]:
    """Join flat table rows into fully resolved BarNight records.

    Night order is kept as given; children keep their row order.
    """
    participants: Dict[int, List[Profile]] = {}
    for row in participant_rows:
        participants.setdefault(row["bar_night_id"], []).append(_profile_from_row(row, "participant_id"))

    payments: Dict[int, List[Payment]] = {}
    for row in payment_rows:
        payments.setdefault(row["bar_night_id"], []).append(
            Payment(payer=_profile_from_row(row, "payer_id"), amount=_to_decimal(row["amount"]))
        )

    item_participants: Dict[int, List[Profile]] = {}
    for row in item_participant_rows:
        item_participants.setdefault(row["individual_item_id"], []).append(
            _profile_from_row(row, "participant_id")
        )

    items: Dict[int, List[IndividualItem]] = {}
    for row in item_rows:
        items.setdefault(row["bar_night_id"], []).append(
            IndividualItem(
                id=row["id"],
                description=row["description"],
                amount=_to_decimal(row["amount"]),
                participants=tuple(item_participants.get(row["id"], [])),
            )
        )

    nights: List[BarNight] = []
    for row in night_rows:
        night_id = row["id"]
        nights.append(
            BarNight(
                id=night_id,
                name=row.get("name") or "",
                total_amount=_to_decimal(row["total_amount"]),
                date=_as_date(row["date"]),
                created_by=row.get("created_by"),
                participants=tuple(participants.get(night_id, [])),
                payments=tuple(payments.get(night_id, [])),
                individual_items=tuple(items.get(night_id, [])),
            )
        )
    return nights


class LedgerStore:
    """MySQL-backed persistence for users and bar nights."""

    def __init__(self, database: Optional[Database] = None, max_workers: int = 3) -> None:
        self.db = database or default_db
        self.max_workers = max_workers

    # Users

    @_translate_errors
    def list_profiles(self) -> List[Profile]:
        rows = self.db.fetch_all("SELECT id, display_name, email FROM users ORDER BY display_name")
        return [_profile_from_row(row, "id") for row in rows]

    @_translate_errors
    def find_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return self.db.fetch_one(
            "SELECT id, display_name, email, password FROM users WHERE email=%s",
            (email,),
        )

    @_translate_errors
    def create_user(self, display_name: str, email: str, password_hash: str) -> int:
        return self.db.execute(
            "INSERT INTO users (display_name, email, password) VALUES (%s, %s, %s)",
            (display_name, email, password_hash),
        )

    # Bar nights

    @_translate_errors
    def get_bar_night(self, night_id: int) -> Optional[Dict[str, Any]]:
        return self.db.fetch_one(
            "SELECT id, name, total_amount, date, created_by FROM bar_nights WHERE id=%s",
            (night_id,),
        )

    @_translate_errors
    def list_bar_nights(self) -> List[BarNight]:
        night_rows = self.db.fetch_all(
            """
            SELECT id, name, total_amount, date, created_by
            FROM bar_nights
            ORDER BY date DESC, id DESC
            """
        )
        if not night_rows:
            return []

        night_ids = [row["id"] for row in night_rows]
        placeholders = _placeholders(night_ids)

        # Children of the night set are independent, so fetch them side by side
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            participants_future = executor.submit(
                self.db.fetch_all,
                f"""
                SELECT p.bar_night_id, p.participant_id, p.share_amount, u.display_name, u.email
                FROM bar_night_participants p
                JOIN users u ON p.participant_id = u.id
                WHERE p.bar_night_id IN ({placeholders})
                ORDER BY p.id
                """,
                night_ids,
            )
            payments_future = executor.submit(
                self.db.fetch_all,
                f"""
                SELECT pay.bar_night_id, pay.payer_id, pay.amount, u.display_name, u.email
                FROM bar_night_payments pay
                LEFT JOIN users u ON pay.payer_id = u.id
                WHERE pay.bar_night_id IN ({placeholders})
                ORDER BY pay.id
                """,
                night_ids,
            )
            items_future = executor.submit(
                self.db.fetch_all,
                f"""
                SELECT id, bar_night_id, description, amount
                FROM individual_items
                WHERE bar_night_id IN ({placeholders})
                ORDER BY id
                """,
                night_ids,
            )
            participant_rows = participants_future.result()
            payment_rows = payments_future.result()
            item_rows = items_future.result()

        item_participant_rows: List[Dict[str, Any]] = []
        item_ids = [row["id"] for row in item_rows]
        if item_ids:
            item_participant_rows = self.db.fetch_all(
                f"""
                SELECT ip.individual_item_id, ip.participant_id, ip.share_amount, u.display_name, u.email
                FROM individual_item_participants ip
                JOIN users u ON ip.participant_id = u.id
                WHERE ip.individual_item_id IN ({_placeholders(item_ids)})
                ORDER BY ip.id
                """,
                item_ids,
            )

        logger.debug("Loaded %d bar nights with %d items", len(night_rows), len(item_rows))
        return assemble_bar_nights(night_rows, participant_rows, payment_rows, item_rows, item_participant_rows)

    @_translate_errors
    def create_bar_night(self, request: BarNightRequest, created_by: int) -> int:
        night_date = request.date or date.today()
        with self.db.transaction() as tx:
            night_id = tx.execute(
                """
                INSERT INTO bar_nights (name, total_amount, date, created_by)
                VALUES (%s, %s, %s, %s)
                """,
                (request.name, str(request.total_amount), night_date.isoformat(), created_by),
            )
            self._insert_children(tx, night_id, request)

        logger.info(
            "Created bar night %s (total=%s, participants=%d, items=%d)",
            night_id,
            request.total_amount,
            len(request.participants),
            len(request.individual_items),
        )
        return night_id

    @_translate_errors
    def update_bar_night(self, night_id: int, request: BarNightRequest) -> None:
        """Replace a night's total, name and every child row.

        Children are deleted and re-inserted rather than diffed; the whole
        sequence runs in one transaction.
        """
        with self.db.transaction() as tx:
            tx.execute(
                "UPDATE bar_nights SET total_amount=%s, name=%s WHERE id=%s",
                (str(request.total_amount), request.name, night_id),
            )
            self._delete_children(tx, night_id)
            self._insert_children(tx, night_id, request)

        logger.info("Updated bar night %s (total=%s)", night_id, request.total_amount)

    @_translate_errors
    def delete_bar_night(self, night_id: int) -> None:
        with self.db.transaction() as tx:
            self._delete_children(tx, night_id)
            tx.execute("DELETE FROM bar_nights WHERE id=%s", (night_id,))

        logger.info("Deleted bar night %s", night_id)

    def _delete_children(self, tx: Transaction, night_id: int) -> None:
        tx.execute(
            """
            DELETE FROM individual_item_participants
            WHERE individual_item_id IN (SELECT id FROM individual_items WHERE bar_night_id=%s)
            """,
            (night_id,),
        )
        tx.execute("DELETE FROM individual_items WHERE bar_night_id=%s", (night_id,))
        tx.execute("DELETE FROM bar_night_payments WHERE bar_night_id=%s", (night_id,))
        tx.execute("DELETE FROM bar_night_participants WHERE bar_night_id=%s", (night_id,))

    def _insert_children(self, tx: Transaction, night_id: int, request: BarNightRequest) -> None:
        share = equal_share(request.total_amount, len(request.participants))
        tx.execute_many(
            """
            INSERT INTO bar_night_participants (bar_night_id, participant_id, share_amount)
            VALUES (%s, %s, %s)
            """,
            [(night_id, user_id, str(share)) for user_id in request.participants],
        )

        tx.execute_many(
            """
            INSERT INTO bar_night_payments (bar_night_id, payer_id, amount)
            VALUES (%s, %s, %s)
            """,
            [(night_id, user_id, str(amount)) for user_id, amount in request.paid_by],
        )

        for item in request.individual_items:
            item_id = tx.execute(
                """
                INSERT INTO individual_items (bar_night_id, description, amount)
                VALUES (%s, %s, %s)
                """,
                (night_id, item.description, str(item.amount)),
            )
            item_share = equal_share(item.amount, len(item.participants))
            tx.execute_many(
                """
                INSERT INTO individual_item_participants (individual_item_id, participant_id, share_amount)
                VALUES (%s, %s, %s)
                """,
                [(item_id, user_id, str(item_share)) for user_id in item.participants],
            )
