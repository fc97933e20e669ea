"""
Storage backends for accounts, posts, transactions and pricing settings.

Every backend hands out plain dict records (copies, never live references)
and implements two atomic primitives that the settlement logic relies on:

- ``adjust_balance``: conditional add that refuses to take a balance below zero
- ``increment_post_field``: counter increment without a read-then-write window

Backends:
- InMemoryStorage   -- dicts guarded by a lock (tests, demos)
- JsonFileStorage   -- InMemoryStorage rewritten to one JSON file on every mutation
- SqliteStorage     -- relational tables with guarded UPDATE statements
"""

import json
import logging
import os
import sqlite3
import tempfile
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal, ROUND_DOWN
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional

from .errors import StoreError

logger = logging.getLogger(__name__)

POST_COUNTERS = ("likes", "hearts", "hahas", "views")

DECIMAL_FIELDS = {"balance", "amount", "ad_cost_per_100k_views", "min_withdraw"}
DATETIME_FIELDS = {"created_at"}

# USDT carries 6 decimals on chain; SQLite keeps integer units.
TOKEN_DECIMALS = 6
TEN_POW = 10 ** TOKEN_DECIMALS


def usdt_to_units(amount) -> int:
    amount = Decimal(str(amount))
    return int((amount * Decimal(TEN_POW)).quantize(Decimal("1"), rounding=ROUND_DOWN))


def units_to_usdt(units: int) -> Decimal:
    return Decimal(units) / Decimal(TEN_POW)


def _encode(record: dict) -> dict:
    out = {}
    for key, value in record.items():
        if isinstance(value, Decimal):
            out[key] = str(value)
        elif isinstance(value, datetime):
            out[key] = value.isoformat()
        elif isinstance(value, Enum):
            out[key] = value.value
        else:
            out[key] = value
    return out


def _decode(record: dict) -> dict:
    out = dict(record)
    for key in DECIMAL_FIELDS & out.keys():
        if out[key] is not None:
            out[key] = Decimal(str(out[key]))
    for key in DATETIME_FIELDS & out.keys():
        if isinstance(out[key], str):
            out[key] = datetime.fromisoformat(out[key])
    return out


class Storage(ABC):
    # accounts
    @abstractmethod
    def insert_account(self, record: dict) -> None: ...

    @abstractmethod
    def get_account(self, account_id: str) -> Optional[dict]: ...

    @abstractmethod
    def find_account_by_email(self, email: str) -> Optional[dict]: ...

    @abstractmethod
    def list_accounts(self) -> list[dict]: ...

    @abstractmethod
    def update_account(self, account_id: str, fields: dict) -> Optional[dict]: ...

    @abstractmethod
    def adjust_balance(self, account_id: str, delta: Decimal) -> Optional[Decimal]:
        """Add ``delta`` to the balance unless the result would be negative.

        Returns the new balance, or None when the account is missing or the
        guard refused the update.
        """

    # posts
    @abstractmethod
    def insert_post(self, record: dict) -> None: ...

    @abstractmethod
    def get_post(self, post_id: str) -> Optional[dict]: ...

    @abstractmethod
    def list_posts(self, user_id: Optional[str] = None) -> list[dict]:
        """Newest first."""

    @abstractmethod
    def update_post(self, post_id: str, fields: dict) -> Optional[dict]: ...

    @abstractmethod
    def update_posts_by_user(self, user_id: str, fields: dict) -> int: ...

    @abstractmethod
    def increment_post_field(self, post_id: str, field: str, by: int = 1) -> Optional[int]: ...

    # transactions
    @abstractmethod
    def insert_transaction(self, record: dict) -> None: ...

    @abstractmethod
    def get_transaction(self, tx_id: str) -> Optional[dict]: ...

    @abstractmethod
    def list_transactions(
        self,
        user_id: Optional[str] = None,
        tx_type: Optional[str] = None,
        status: Optional[str] = None,
    ) -> list[dict]:
        """Oldest first."""

    @abstractmethod
    def update_transaction_status(self, tx_id: str, expected: str, new: str) -> bool:
        """Flip status only if it still equals ``expected``."""

    # settings
    @abstractmethod
    def load_settings(self) -> Optional[dict]: ...

    @abstractmethod
    def save_settings(self, record: dict) -> None: ...

    # sessions
    @abstractmethod
    def put_session(self, token: str, account_id: str) -> None: ...

    @abstractmethod
    def get_session(self, token: str) -> Optional[str]: ...

    @abstractmethod
    def delete_session(self, token: str) -> None: ...


def _check_counter(field: str) -> None:
    if field not in POST_COUNTERS:
        raise ValueError(f"Unknown post counter: {field}")


class InMemoryStorage(Storage):
    def __init__(self):
        self.accounts: dict[str, dict] = {}
        self.posts: dict[str, dict] = {}
        self.transactions: dict[str, dict] = {}
        self.sessions: dict[str, str] = {}
        self.settings: Optional[dict] = None
        self._lock = threading.RLock()

    def _persist(self) -> None:
        pass

    def insert_account(self, record: dict) -> None:
        with self._lock:
            self.accounts[record["id"]] = dict(record)
            self._persist()

    def get_account(self, account_id: str) -> Optional[dict]:
        record = self.accounts.get(account_id)
        return dict(record) if record else None

    def find_account_by_email(self, email: str) -> Optional[dict]:
        for record in self.accounts.values():
            if record["email"] == email:
                return dict(record)
        return None

    def list_accounts(self) -> list[dict]:
        return [dict(r) for r in sorted(self.accounts.values(), key=lambda r: r["created_at"])]

    def update_account(self, account_id: str, fields: dict) -> Optional[dict]:
        with self._lock:
            record = self.accounts.get(account_id)
            if record is None:
                return None
            record.update(fields)
            self._persist()
            return dict(record)

    def adjust_balance(self, account_id: str, delta: Decimal) -> Optional[Decimal]:
        with self._lock:
            record = self.accounts.get(account_id)
            if record is None:
                return None
            new_balance = record["balance"] + delta
            if new_balance < 0:
                return None
            record["balance"] = new_balance
            self._persist()
            return new_balance

    def insert_post(self, record: dict) -> None:
        with self._lock:
            self.posts[record["id"]] = dict(record)
            self._persist()

    def get_post(self, post_id: str) -> Optional[dict]:
        record = self.posts.get(post_id)
        return dict(record) if record else None

    def list_posts(self, user_id: Optional[str] = None) -> list[dict]:
        posts = [
            dict(p) for p in reversed(list(self.posts.values()))
            if user_id is None or p["user_id"] == user_id
        ]
        # stable sort keeps reverse insertion order for equal timestamps
        posts.sort(key=lambda p: p["created_at"], reverse=True)
        return posts

    def update_post(self, post_id: str, fields: dict) -> Optional[dict]:
        with self._lock:
            record = self.posts.get(post_id)
            if record is None:
                return None
            record.update(fields)
            self._persist()
            return dict(record)

    def update_posts_by_user(self, user_id: str, fields: dict) -> int:
        with self._lock:
            count = 0
            for record in self.posts.values():
                if record["user_id"] == user_id:
                    record.update(fields)
                    count += 1
            if count:
                self._persist()
            return count

    def increment_post_field(self, post_id: str, field: str, by: int = 1) -> Optional[int]:
        _check_counter(field)
        with self._lock:
            record = self.posts.get(post_id)
            if record is None:
                return None
            record[field] = record.get(field, 0) + by
            self._persist()
            return record[field]

    def insert_transaction(self, record: dict) -> None:
        with self._lock:
            self.transactions[record["id"]] = dict(record)
            self._persist()

    def get_transaction(self, tx_id: str) -> Optional[dict]:
        record = self.transactions.get(tx_id)
        return dict(record) if record else None

    def list_transactions(
        self,
        user_id: Optional[str] = None,
        tx_type: Optional[str] = None,
        status: Optional[str] = None,
    ) -> list[dict]:
        return [
            dict(t) for t in self.transactions.values()
            if (user_id is None or t["user_id"] == user_id)
            and (tx_type is None or t["type"] == tx_type)
            and (status is None or t["status"] == status)
        ]

    def update_transaction_status(self, tx_id: str, expected: str, new: str) -> bool:
        with self._lock:
            record = self.transactions.get(tx_id)
            if record is None or record["status"] != expected:
                return False
            record["status"] = new
            self._persist()
            return True

    def load_settings(self) -> Optional[dict]:
        return dict(self.settings) if self.settings else None

    def save_settings(self, record: dict) -> None:
        with self._lock:
            self.settings = dict(record)
            self._persist()

    def put_session(self, token: str, account_id: str) -> None:
        with self._lock:
            self.sessions[token] = account_id
            self._persist()

    def get_session(self, token: str) -> Optional[str]:
        return self.sessions.get(token)

    def delete_session(self, token: str) -> None:
        with self._lock:
            if self.sessions.pop(token, None) is not None:
                self._persist()


class JsonFileStorage(InMemoryStorage):
    """All tables serialized as top-level keys of one JSON document.

    A failed write rolls the in-memory tables back to the last document
    that reached disk before raising ``StoreError``.
    """

    KEY_USERS = "tf_users"
    KEY_POSTS = "tf_posts"
    KEY_TXS = "tf_txs"
    KEY_SETTINGS = "tf_settings"
    KEY_SESSIONS = "tf_sessions"

    def __init__(self, path):
        super().__init__()
        self.path = Path(path)
        self._saved = self._snapshot()
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise StoreError(f"Cannot read store file {self.path}: {e}") from e

        self._apply(raw)
        self._saved = raw
        logger.info(
            "Loaded %s: %d accounts, %d posts, %d transactions",
            self.path, len(self.accounts), len(self.posts), len(self.transactions),
        )

    def _apply(self, raw: dict) -> None:
        self.accounts = {r["id"]: _decode(r) for r in raw.get(self.KEY_USERS, [])}
        # file order is newest first, dicts keep insertion order oldest first
        self.posts = {r["id"]: _decode(r) for r in reversed(raw.get(self.KEY_POSTS, []))}
        self.transactions = {r["id"]: _decode(r) for r in raw.get(self.KEY_TXS, [])}
        self.sessions = dict(raw.get(self.KEY_SESSIONS, {}))
        settings = raw.get(self.KEY_SETTINGS)
        self.settings = _decode(settings) if settings else None

    def _snapshot(self) -> dict:
        return {
            self.KEY_USERS: [_encode(r) for r in self.accounts.values()],
            self.KEY_POSTS: [_encode(r) for r in reversed(list(self.posts.values()))],
            self.KEY_TXS: [_encode(r) for r in self.transactions.values()],
            self.KEY_SETTINGS: _encode(self.settings) if self.settings else None,
            self.KEY_SESSIONS: dict(self.sessions),
        }

    def _persist(self) -> None:
        payload = self._snapshot()
        data = json.dumps(payload, indent=2, ensure_ascii=False).encode("utf-8")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=self.path.name + ".", suffix=".tmp", dir=str(self.path.parent))
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except OSError as e:
            self._apply(self._saved)
            raise StoreError(f"Cannot write store file {self.path}: {e}") from e
        self._saved = payload


SCHEMA = """
CREATE TABLE IF NOT EXISTS profiles (
  id TEXT PRIMARY KEY,
  email TEXT NOT NULL UNIQUE,
  password_hash TEXT,
  role TEXT NOT NULL DEFAULT 'USER',
  balance_units INTEGER NOT NULL DEFAULT 0 CHECK (balance_units >= 0),
  name TEXT,
  avatar_url TEXT,
  created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS posts (
  id TEXT PRIMARY KEY,
  user_id TEXT NOT NULL REFERENCES profiles(id),
  author_email TEXT,
  author_avatar TEXT,
  content TEXT NOT NULL,
  type TEXT NOT NULL CHECK (type IN ('text', 'link')),
  views INTEGER NOT NULL DEFAULT 0,
  sponsored INTEGER NOT NULL DEFAULT 0,
  likes INTEGER NOT NULL DEFAULT 0,
  hearts INTEGER NOT NULL DEFAULT 0,
  hahas INTEGER NOT NULL DEFAULT 0,
  created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS transactions (
  id TEXT PRIMARY KEY,
  user_id TEXT NOT NULL REFERENCES profiles(id),
  type TEXT NOT NULL,
  amount_units INTEGER NOT NULL,
  network TEXT,
  status TEXT NOT NULL,
  tx_hash TEXT,
  post_id TEXT REFERENCES posts(id),
  created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_transactions_user ON transactions(user_id);
CREATE INDEX IF NOT EXISTS idx_posts_user ON posts(user_id);

CREATE TABLE IF NOT EXISTS settings (
  id INTEGER PRIMARY KEY CHECK (id = 1),
  payload TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS sessions (
  token TEXT PRIMARY KEY,
  account_id TEXT NOT NULL REFERENCES profiles(id)
);
"""

ACCOUNT_COLUMNS = ("id", "email", "password_hash", "role", "balance", "name", "avatar_url", "created_at")
POST_COLUMNS = (
    "id", "user_id", "author_email", "author_avatar", "content", "type",
    "views", "sponsored", "likes", "hearts", "hahas", "created_at",
)
TRANSACTION_COLUMNS = ("id", "user_id", "type", "amount", "network", "status", "tx_hash", "post_id", "created_at")


def _to_row(record: dict, columns: tuple) -> dict:
    row = {}
    for key in columns:
        if key not in record:
            continue
        value = record[key]
        if key in ("balance", "amount"):
            row[f"{key}_units"] = usdt_to_units(value)
        elif isinstance(value, datetime):
            row[key] = value.isoformat()
        elif isinstance(value, Enum):
            row[key] = value.value
        elif isinstance(value, bool):
            row[key] = int(value)
        else:
            row[key] = value
    return row


def _from_row(row: sqlite3.Row) -> dict:
    record = dict(row)
    for key in ("balance", "amount"):
        units = record.pop(f"{key}_units", None)
        if units is not None:
            record[key] = units_to_usdt(units)
    if "sponsored" in record:
        record["sponsored"] = bool(record["sponsored"])
    if isinstance(record.get("created_at"), str):
        record["created_at"] = datetime.fromisoformat(record["created_at"])
    return record


class SqliteStorage(Storage):
    def __init__(self, path):
        self.path = str(path)
        with self._connect() as conn:
            conn.executescript(SCHEMA)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.path, timeout=30)
        try:
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StoreError(f"SQLite error: {e}") from e
        finally:
            conn.close()

    def _insert(self, table: str, row: dict) -> None:
        cols = ", ".join(row)
        marks = ", ".join("?" for _ in row)
        with self._connect() as conn:
            conn.execute(f"INSERT INTO {table} ({cols}) VALUES ({marks})", tuple(row.values()))

    def _update(self, table: str, where: str, params: tuple, row: dict) -> int:
        if not row:
            return 0
        assignments = ", ".join(f"{col} = ?" for col in row)
        with self._connect() as conn:
            cur = conn.execute(
                f"UPDATE {table} SET {assignments} WHERE {where}",
                tuple(row.values()) + params,
            )
            return cur.rowcount

    def _fetch_one(self, sql: str, params: tuple) -> Optional[dict]:
        with self._connect() as conn:
            row = conn.execute(sql, params).fetchone()
        return _from_row(row) if row else None

    def _fetch_all(self, sql: str, params: tuple = ()) -> list[dict]:
        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_from_row(r) for r in rows]

    def insert_account(self, record: dict) -> None:
        self._insert("profiles", _to_row(record, ACCOUNT_COLUMNS))

    def get_account(self, account_id: str) -> Optional[dict]:
        return self._fetch_one("SELECT * FROM profiles WHERE id = ?", (account_id,))

    def find_account_by_email(self, email: str) -> Optional[dict]:
        return self._fetch_one("SELECT * FROM profiles WHERE email = ?", (email,))

    def list_accounts(self) -> list[dict]:
        return self._fetch_all("SELECT * FROM profiles ORDER BY created_at, rowid")

    def update_account(self, account_id: str, fields: dict) -> Optional[dict]:
        row = _to_row(fields, tuple(c for c in ACCOUNT_COLUMNS if c != "id"))
        self._update("profiles", "id = ?", (account_id,), row)
        return self.get_account(account_id)

    def adjust_balance(self, account_id: str, delta: Decimal) -> Optional[Decimal]:
        units = usdt_to_units(delta)
        with self._connect() as conn:
            cur = conn.execute(
                "UPDATE profiles SET balance_units = balance_units + ? "
                "WHERE id = ? AND balance_units + ? >= 0",
                (units, account_id, units),
            )
            if cur.rowcount == 0:
                return None
            row = conn.execute("SELECT balance_units FROM profiles WHERE id = ?", (account_id,)).fetchone()
        return units_to_usdt(row["balance_units"])

    def insert_post(self, record: dict) -> None:
        self._insert("posts", _to_row(record, POST_COLUMNS))

    def get_post(self, post_id: str) -> Optional[dict]:
        return self._fetch_one("SELECT * FROM posts WHERE id = ?", (post_id,))

    def list_posts(self, user_id: Optional[str] = None) -> list[dict]:
        if user_id is None:
            return self._fetch_all("SELECT * FROM posts ORDER BY created_at DESC, rowid DESC")
        return self._fetch_all(
            "SELECT * FROM posts WHERE user_id = ? ORDER BY created_at DESC, rowid DESC", (user_id,)
        )

    def update_post(self, post_id: str, fields: dict) -> Optional[dict]:
        row = _to_row(fields, tuple(c for c in POST_COLUMNS if c != "id"))
        self._update("posts", "id = ?", (post_id,), row)
        return self.get_post(post_id)

    def update_posts_by_user(self, user_id: str, fields: dict) -> int:
        row = _to_row(fields, tuple(c for c in POST_COLUMNS if c not in ("id", "user_id")))
        return self._update("posts", "user_id = ?", (user_id,), row)

    def increment_post_field(self, post_id: str, field: str, by: int = 1) -> Optional[int]:
        _check_counter(field)
        with self._connect() as conn:
            cur = conn.execute(f"UPDATE posts SET {field} = {field} + ? WHERE id = ?", (by, post_id))
            if cur.rowcount == 0:
                return None
            row = conn.execute(f"SELECT {field} FROM posts WHERE id = ?", (post_id,)).fetchone()
        return int(row[field])

    def insert_transaction(self, record: dict) -> None:
        self._insert("transactions", _to_row(record, TRANSACTION_COLUMNS))

    def get_transaction(self, tx_id: str) -> Optional[dict]:
        return self._fetch_one("SELECT * FROM transactions WHERE id = ?", (tx_id,))

    def list_transactions(
        self,
        user_id: Optional[str] = None,
        tx_type: Optional[str] = None,
        status: Optional[str] = None,
    ) -> list[dict]:
        clauses, params = [], []
        for column, value in (("user_id", user_id), ("type", tx_type), ("status", status)):
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        return self._fetch_all(f"SELECT * FROM transactions{where} ORDER BY created_at, rowid", tuple(params))

    def update_transaction_status(self, tx_id: str, expected: str, new: str) -> bool:
        return self._update("transactions", "id = ? AND status = ?", (tx_id, expected), {"status": new}) == 1

    def load_settings(self) -> Optional[dict]:
        with self._connect() as conn:
            row = conn.execute("SELECT payload FROM settings WHERE id = 1").fetchone()
        return _decode(json.loads(row["payload"])) if row else None

    def save_settings(self, record: dict) -> None:
        payload = json.dumps(_encode(record))
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO settings (id, payload) VALUES (1, ?) "
                "ON CONFLICT(id) DO UPDATE SET payload = excluded.payload",
                (payload,),
            )

    def put_session(self, token: str, account_id: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO sessions (token, account_id) VALUES (?, ?)", (token, account_id)
            )

    def get_session(self, token: str) -> Optional[str]:
        with self._connect() as conn:
            row = conn.execute("SELECT account_id FROM sessions WHERE token = ?", (token,)).fetchone()
        return row["account_id"] if row else None

    def delete_session(self, token: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM sessions WHERE token = ?", (token,))


def create_storage(kind: str = "memory", path: Optional[str] = None) -> Storage:
    if kind == "memory":
        return InMemoryStorage()
    if kind == "json":
        return JsonFileStorage(path or "tapfeed.json")
    if kind == "sqlite":
        return SqliteStorage(path or "tapfeed.db")
    raise ValueError(f"Unknown storage backend: {kind}")
