from contextlib import contextmanager
from threading import Lock
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence

from mysql.connector import pooling

from .config import config


class Transaction:
    """Statements issued through one cursor and committed together."""

    def __init__(self, cursor) -> None:
        self._cursor = cursor

    def fetch_one(self, query: str, params: Optional[Iterable[Any]] = None) -> Optional[Dict[str, Any]]:
        self._cursor.execute(query, params or ())
        return self._cursor.fetchone()

    def fetch_all(self, query: str, params: Optional[Iterable[Any]] = None) -> List[Dict[str, Any]]:
        self._cursor.execute(query, params or ())
        return self._cursor.fetchall()

    def execute(self, query: str, params: Optional[Iterable[Any]] = None) -> int:
        self._cursor.execute(query, params or ())
        return self._cursor.lastrowid

    def execute_many(self, query: str, rows: Sequence[Iterable[Any]]) -> None:
        if rows:
            self._cursor.executemany(query, rows)


class Database:
    def __init__(self) -> None:
        self._pool: Optional[pooling.MySQLConnectionPool] = None
        self._pool_lock = Lock()

    @property
    def pool(self) -> pooling.MySQLConnectionPool:
        # Created on first use so importing the app never needs a live server
        with self._pool_lock:
            if self._pool is None:
                self._pool = pooling.MySQLConnectionPool(
                    pool_name="barnight_pool",
                    pool_size=config.DB_POOL_SIZE,
                    host=config.DB_HOST,
                    port=config.DB_PORT,
                    user=config.DB_USER,
                    password=config.DB_PASSWORD,
                    database=config.DB_NAME,
                    auth_plugin="mysql_native_password",
                )
            return self._pool

    @contextmanager
    def connection(self):
        conn = self.pool.get_connection()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def cursor(self, dictionary: bool = True):
        with self.connection() as conn:
            cursor = conn.cursor(dictionary=dictionary)
            try:
                yield cursor
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                cursor.close()

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        with self.cursor() as cursor:
            yield Transaction(cursor)

    def fetch_one(self, query: str, params: Optional[Iterable[Any]] = None) -> Optional[Dict[str, Any]]:
        with self.transaction() as tx:
            return tx.fetch_one(query, params)

    def fetch_all(self, query: str, params: Optional[Iterable[Any]] = None) -> List[Dict[str, Any]]:
        with self.transaction() as tx:
            return tx.fetch_all(query, params)

    def execute(self, query: str, params: Optional[Iterable[Any]] = None) -> int:
        with self.transaction() as tx:
            return tx.execute(query, params)

    def execute_many(self, query: str, rows: Sequence[Iterable[Any]]) -> None:
        with self.transaction() as tx:
            tx.execute_many(query, rows)


db = Database()
