from contextlib import contextmanager
from datetime import date
from itertools import count

import mysql.connector
import pytest

from barnight.app import create_app
from barnight.store import StoreError
from barnight.models import BarNight, IndividualItem, Payment, Profile
from barnight.submission import equal_share


class RecordingTransaction:
    def __init__(self, database):
        self.database = database

    def fetch_one(self, query, params=None):
        return self.database.fetch_one(query, params)

    def fetch_all(self, query, params=None):
        return self.database.fetch_all(query, params)

    def execute(self, query, params=None):
        return self.database.execute(query, params)

    def execute_many(self, query, rows):
        self.database._check(query)
        if rows:
            self.database.statements.append((" ".join(query.split()), list(rows)))


class RecordingDatabase:
    """Stands in for barnight.db.Database; answers reads from canned rows by table."""

    def __init__(self, tables=None, fail_on=None):
        self.tables = tables or {}
        self.fail_on = fail_on
        self.statements = []
        self.transactions = 0
        self._ids = count(100)

    def _check(self, query):
        if self.fail_on and self.fail_on in query:
            raise mysql.connector.Error(msg=f"boom on {self.fail_on}")

    def _table_for(self, query):
        from_clause = query.split(" FROM ", 1)[1]
        return from_clause.split()[0]

    def fetch_one(self, query, params=None):
        rows = self.fetch_all(query, params)
        return rows[0] if rows else None

    def fetch_all(self, query, params=None):
        query = " ".join(query.split())
        self._check(query)
        self.statements.append((query, list(params or ())))
        return list(self.tables.get(self._table_for(query), []))

    def execute(self, query, params=None):
        query = " ".join(query.split())
        self._check(query)
        self.statements.append((query, list(params or ())))
        return next(self._ids)

    @contextmanager
    def transaction(self):
        self.transactions += 1
        yield RecordingTransaction(self)


class InMemoryStore:
    """LedgerStore double keeping users and bar nights in dicts."""

    def __init__(self):
        self.users = {}
        self.nights = {}
        self.shares = {}
        self._ids = count(1)
        self.fail_reads = False
        self.fail_writes = False

    def _fail(self, flag):
        if flag:
            raise StoreError("store unavailable")

    def add_user(self, display_name, email, password_hash="x"):
        return self.create_user(display_name, email, password_hash)

    def list_profiles(self):
        self._fail(self.fail_reads)
        profiles = [
            Profile(user_id, user["display_name"], user["email"]) for user_id, user in self.users.items()
        ]
        return sorted(profiles, key=lambda profile: profile.display_name)

    def find_user_by_email(self, email):
        for user_id, user in self.users.items():
            if user["email"] == email:
                return dict(user, id=user_id)
        return None

    def create_user(self, display_name, email, password_hash):
        user_id = next(self._ids)
        self.users[user_id] = {"display_name": display_name, "email": email, "password": password_hash}
        return user_id

    def get_bar_night(self, night_id):
        night = self.nights.get(night_id)
        if night is None:
            return None
        return {"id": night_id, "name": night["request"].name, "created_by": night["created_by"]}

    def _profile(self, user_id):
        user = self.users[user_id]
        return Profile(user_id, user["display_name"], user["email"])

    def list_bar_nights(self):
        self._fail(self.fail_reads)
        nights = []
        for night_id, night in self.nights.items():
            request = night["request"]
            nights.append(
                BarNight(
                    id=night_id,
                    name=request.name,
                    total_amount=request.total_amount,
                    date=night["date"],
                    created_by=night["created_by"],
                    participants=tuple(self._profile(user_id) for user_id in request.participants),
                    payments=tuple(Payment(self._profile(user_id), amount) for user_id, amount in request.paid_by),
                    individual_items=tuple(
                        IndividualItem(
                            id=index,
                            description=item.description,
                            amount=item.amount,
                            participants=tuple(self._profile(user_id) for user_id in item.participants),
                        )
                        for index, item in enumerate(request.individual_items, start=1)
                    ),
                )
            )
        return sorted(nights, key=lambda night: (night.date, night.id), reverse=True)

    def _save(self, night_id, request, created_by, night_date):
        self.nights[night_id] = {"request": request, "created_by": created_by, "date": night_date}
        share = equal_share(request.total_amount, len(request.participants))
        self.shares[night_id] = {user_id: share for user_id in request.participants}

    def create_bar_night(self, request, created_by):
        self._fail(self.fail_writes)
        night_id = next(self._ids)
        self._save(night_id, request, created_by, request.date or date.today())
        return night_id

    def update_bar_night(self, night_id, request):
        self._fail(self.fail_writes)
        night = self.nights[night_id]
        self._save(night_id, request, night["created_by"], night["date"])

    def delete_bar_night(self, night_id):
        self._fail(self.fail_writes)
        self.nights.pop(night_id)
        self.shares.pop(night_id, None)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def app(store):
    app = create_app(store=store)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def users(store):
    return {
        "alice": store.add_user("Alice", "alice@example.com"),
        "bob": store.add_user("Bob", "bob@example.com"),
        "carol": store.add_user("Carol", "carol@example.com"),
    }


@pytest.fixture
def login_as(client):
    def _login(user_id, name="Tester"):
        with client.session_transaction() as sess:
            sess["user_id"] = user_id
            sess["user_name"] = name

    return _login


@pytest.fixture
def make_database():
    return RecordingDatabase
