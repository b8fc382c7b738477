# signalbridge/storage.py
from __future__ import annotations

import json
import os
import sqlite3
import threading
from collections import OrderedDict, deque
from typing import Any, Deque, Dict, List, Optional

from signalbridge.models import Signal, Strategy, Subscriber, WebhookRegistration


def _newest_first(items, limit: Optional[int]) -> List[Signal]:
    out = [Signal.from_dict(d) for d in reversed(list(items))]
    return out[:limit] if limit else out


class MemoryStore:
    """Process-local store: dicts plus bounded deques. Lost on restart."""

    def __init__(self, strategy_history: int = 200, user_history: int = 100) -> None:
        self.strategy_history = strategy_history
        self.user_history = user_history
        self._lock = threading.Lock()
        self._strategies: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        self._subscribers: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        self._webhook: Optional[Dict[str, Any]] = None
        self._strategy_signals: Dict[str, Deque[Dict[str, Any]]] = {}
        self._user_signals: Dict[str, Deque[Dict[str, Any]]] = {}
        # insertion order across all strategies, for the unfiltered admin view
        self._all_signals: Deque[Dict[str, Any]] = deque(maxlen=strategy_history)

    # ── Strategies ────────────────────────────────────────────────────────────
    def get_strategy(self, strategy_id: str) -> Optional[Strategy]:
        with self._lock:
            d = self._strategies.get(strategy_id)
        return Strategy.from_dict(d) if d else None

    def list_strategies(self) -> List[Strategy]:
        with self._lock:
            docs = list(self._strategies.values())
        return [Strategy.from_dict(d) for d in docs]

    def save_strategy(self, strategy: Strategy) -> None:
        with self._lock:
            self._strategies[strategy.id] = strategy.to_dict()

    # ── Subscribers ───────────────────────────────────────────────────────────
    def get_subscriber(self, uid: str) -> Optional[Subscriber]:
        with self._lock:
            d = self._subscribers.get(uid)
        return Subscriber.from_dict(d) if d else None

    def list_subscribers(self) -> List[Subscriber]:
        with self._lock:
            docs = list(self._subscribers.values())
        return [Subscriber.from_dict(d) for d in docs]

    def save_subscriber(self, subscriber: Subscriber) -> None:
        with self._lock:
            self._subscribers[subscriber.uid] = subscriber.to_dict()

    # ── Webhook ───────────────────────────────────────────────────────────────
    def get_webhook(self) -> Optional[WebhookRegistration]:
        with self._lock:
            d = self._webhook
        return WebhookRegistration.from_dict(d) if d else None

    def save_webhook(self, registration: WebhookRegistration) -> None:
        with self._lock:
            self._webhook = registration.to_dict()

    # ── Histories ─────────────────────────────────────────────────────────────
    def append_strategy_signal(self, strategy_id: str, signal: Signal) -> None:
        doc = signal.to_dict()
        with self._lock:
            buf = self._strategy_signals.setdefault(strategy_id, deque(maxlen=self.strategy_history))
            buf.append(doc)
            self._all_signals.append(doc)

    def strategy_signals(self, strategy_id: Optional[str] = None, limit: Optional[int] = None) -> List[Signal]:
        with self._lock:
            items = list(self._all_signals if strategy_id is None else self._strategy_signals.get(strategy_id, ()))
        return _newest_first(items, limit)

    def append_user_signal(self, uid: str, signal: Signal) -> None:
        with self._lock:
            buf = self._user_signals.setdefault(uid, deque(maxlen=self.user_history))
            buf.append(signal.to_dict())

    def user_signals(self, uid: str, limit: Optional[int] = None) -> List[Signal]:
        with self._lock:
            items = list(self._user_signals.get(uid, ()))
        return _newest_first(items, limit)


class SqliteStore:
    """Thread-safe SQLite store. Entities are JSON documents; histories are trimmed ring tables."""

    def __init__(
        self,
        db_path: str | os.PathLike[str] = "signalbridge.db",
        strategy_history: int = 200,
        user_history: int = 100,
    ) -> None:
        self.path = str(db_path)
        self.strategy_history = strategy_history
        self.user_history = user_history
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self.path, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._init()

    def _init(self) -> None:
        cur = self._conn.cursor()
        cur.execute("PRAGMA user_version")
        ver = int(cur.fetchone()[0])
        if ver < 1:
            cur.executescript(
                """
                BEGIN;
                CREATE TABLE IF NOT EXISTS strategies (
                    id TEXT PRIMARY KEY,
                    seq INTEGER NOT NULL,
                    doc TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS subscribers (
                    uid TEXT PRIMARY KEY,
                    seq INTEGER NOT NULL,   -- registration order, fan-out iterates on it
                    doc TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS webhook (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    doc TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS strategy_signals (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    strategy_id TEXT NOT NULL,
                    doc TEXT NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_strategy_signals ON strategy_signals(strategy_id, id);

                CREATE TABLE IF NOT EXISTS user_signals (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    uid TEXT NOT NULL,
                    doc TEXT NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_user_signals ON user_signals(uid, id);
                PRAGMA user_version = 1;
                COMMIT;
                """
            )
            self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # ── Strategies ────────────────────────────────────────────────────────────
    def get_strategy(self, strategy_id: str) -> Optional[Strategy]:
        with self._lock:
            row = self._conn.execute("SELECT doc FROM strategies WHERE id = ?", (strategy_id,)).fetchone()
        return Strategy.from_dict(json.loads(row[0])) if row else None

    def list_strategies(self) -> List[Strategy]:
        with self._lock:
            rows = self._conn.execute("SELECT doc FROM strategies ORDER BY seq").fetchall()
        return [Strategy.from_dict(json.loads(r[0])) for r in rows]

    def save_strategy(self, strategy: Strategy) -> None:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO strategies(id, seq, doc)
                VALUES(?, (SELECT COALESCE(MAX(seq), 0) + 1 FROM strategies), ?)
                ON CONFLICT(id) DO UPDATE SET doc=excluded.doc
                """,
                (strategy.id, json.dumps(strategy.to_dict())),
            )
            self._conn.commit()

    # ── Subscribers ───────────────────────────────────────────────────────────
    def get_subscriber(self, uid: str) -> Optional[Subscriber]:
        with self._lock:
            row = self._conn.execute("SELECT doc FROM subscribers WHERE uid = ?", (uid,)).fetchone()
        return Subscriber.from_dict(json.loads(row[0])) if row else None

    def list_subscribers(self) -> List[Subscriber]:
        with self._lock:
            rows = self._conn.execute("SELECT doc FROM subscribers ORDER BY seq").fetchall()
        return [Subscriber.from_dict(json.loads(r[0])) for r in rows]

    def save_subscriber(self, subscriber: Subscriber) -> None:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO subscribers(uid, seq, doc)
                VALUES(?, (SELECT COALESCE(MAX(seq), 0) + 1 FROM subscribers), ?)
                ON CONFLICT(uid) DO UPDATE SET doc=excluded.doc
                """,
                (subscriber.uid, json.dumps(subscriber.to_dict())),
            )
            self._conn.commit()

    # ── Webhook ───────────────────────────────────────────────────────────────
    def get_webhook(self) -> Optional[WebhookRegistration]:
        with self._lock:
            row = self._conn.execute("SELECT doc FROM webhook WHERE id = 1").fetchone()
        return WebhookRegistration.from_dict(json.loads(row[0])) if row else None

    def save_webhook(self, registration: WebhookRegistration) -> None:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO webhook(id, doc) VALUES(1, ?)
                ON CONFLICT(id) DO UPDATE SET doc=excluded.doc
                """,
                (json.dumps(registration.to_dict()),),
            )
            self._conn.commit()

    # ── Histories ─────────────────────────────────────────────────────────────
    def append_strategy_signal(self, strategy_id: str, signal: Signal) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT INTO strategy_signals(strategy_id, doc) VALUES(?, ?)",
                (strategy_id, json.dumps(signal.to_dict())),
            )
            self._conn.execute(
                """
                DELETE FROM strategy_signals WHERE strategy_id = ? AND id NOT IN (
                    SELECT id FROM strategy_signals WHERE strategy_id = ? ORDER BY id DESC LIMIT ?
                )
                """,
                (strategy_id, strategy_id, self.strategy_history),
            )
            self._conn.commit()

    def strategy_signals(self, strategy_id: Optional[str] = None, limit: Optional[int] = None) -> List[Signal]:
        limit = limit or self.strategy_history
        with self._lock:
            if strategy_id is None:
                rows = self._conn.execute(
                    "SELECT doc FROM strategy_signals ORDER BY id DESC LIMIT ?", (limit,)
                ).fetchall()
            else:
                rows = self._conn.execute(
                    "SELECT doc FROM strategy_signals WHERE strategy_id = ? ORDER BY id DESC LIMIT ?",
                    (strategy_id, limit),
                ).fetchall()
        return [Signal.from_dict(json.loads(r[0])) for r in rows]

    def append_user_signal(self, uid: str, signal: Signal) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT INTO user_signals(uid, doc) VALUES(?, ?)",
                (uid, json.dumps(signal.to_dict())),
            )
            self._conn.execute(
                """
                DELETE FROM user_signals WHERE uid = ? AND id NOT IN (
                    SELECT id FROM user_signals WHERE uid = ? ORDER BY id DESC LIMIT ?
                )
                """,
                (uid, uid, self.user_history),
            )
            self._conn.commit()

    def user_signals(self, uid: str, limit: Optional[int] = None) -> List[Signal]:
        limit = limit or self.user_history
        with self._lock:
            rows = self._conn.execute(
                "SELECT doc FROM user_signals WHERE uid = ? ORDER BY id DESC LIMIT ?", (uid, limit)
            ).fetchall()
        return [Signal.from_dict(json.loads(r[0])) for r in rows]


def build_store(config) -> MemoryStore | SqliteStore:
    if config.store_backend == "sqlite":
        return SqliteStore(config.db_path, config.strategy_signal_history, config.user_signal_history)
    return MemoryStore(config.strategy_signal_history, config.user_signal_history)
