"""Durable rollout records.

One record per rollout id holds the full ``RolloutState`` plus the
``RolloutSpec`` it started with, so a restarted controller resumes without
losing step or weight progress. Terminal rollouts are archived: still
readable, no longer reconciled.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from abc import ABC, abstractmethod
from contextlib import closing
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError

from rollout_sre.delivery.spec import RolloutSpec
from rollout_sre.delivery.state import RolloutState
from rollout_sre.errors import PersistenceError, RolloutNotFoundError

logger = logging.getLogger(__name__)


class RolloutRecord(BaseModel):
    """Persisted form of a rollout."""

    spec: RolloutSpec
    state: RolloutState
    archived: bool = False
    updated_at: float = Field(default_factory=time.time)

    @property
    def rollout_id(self) -> str:
        return self.state.rollout_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rollout_id": self.rollout_id,
            "archived": self.archived,
            "updated_at": self.updated_at,
            "spec": self.spec.model_dump(mode="json"),
            "state": self.state.to_dict(),
        }


def _decode(rollout_id: str, body: str) -> RolloutRecord:
    try:
        return RolloutRecord.model_validate_json(body)
    except ValidationError as exc:
        raise PersistenceError(
            f"Stored record for rollout '{rollout_id}' is corrupt: {exc.error_count()} error(s)",
            rollout_id=rollout_id,
        ) from exc


class RolloutStore(ABC):
    """Storage backend for rollout records."""

    @abstractmethod
    def save(self, record: RolloutRecord) -> None:
        """Insert or replace a record."""

    @abstractmethod
    def load(self, rollout_id: str) -> RolloutRecord:
        """Return the record for *rollout_id*.

        Raises:
            RolloutNotFoundError: no such rollout.
            PersistenceError: the stored record cannot be decoded.
        """

    @abstractmethod
    def archive(self, rollout_id: str) -> None:
        """Mark a rollout as finished so it is no longer reconciled."""

    @abstractmethod
    def active_ids(self) -> List[str]:
        """Ids of rollouts that still need reconciling, oldest first."""

    @abstractmethod
    def all_ids(self) -> List[str]:
        """Ids of every stored rollout, archived included."""

    @abstractmethod
    def active_for_service(self, service: str) -> Optional[str]:
        """Id of the active rollout for *service*, if any."""

    def exists(self, rollout_id: str) -> bool:
        return rollout_id in self.all_ids()


class InMemoryRolloutStore(RolloutStore):
    """Process-local store. Records are kept serialized, as on disk."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        # rollout_id -> (service, archived, body)
        self._records: Dict[str, Tuple[str, bool, str]] = {}

    def save(self, record: RolloutRecord) -> None:
        record = record.model_copy(update={"updated_at": time.time()})
        with self._lock:
            self._records[record.rollout_id] = (
                record.spec.name,
                record.archived,
                record.model_dump_json(),
            )

    def load(self, rollout_id: str) -> RolloutRecord:
        with self._lock:
            entry = self._records.get(rollout_id)
        if entry is None:
            raise RolloutNotFoundError(rollout_id)
        return _decode(rollout_id, entry[2])

    def archive(self, rollout_id: str) -> None:
        record = self.load(rollout_id)
        self.save(record.model_copy(update={"archived": True}))

    def active_ids(self) -> List[str]:
        with self._lock:
            return [rid for rid, (_, archived, _) in self._records.items() if not archived]

    def all_ids(self) -> List[str]:
        with self._lock:
            return list(self._records)

    def active_for_service(self, service: str) -> Optional[str]:
        with self._lock:
            for rid, (name, archived, _) in self._records.items():
                if name == service and not archived:
                    return rid
        return None


_SCHEMA = """
CREATE TABLE IF NOT EXISTS rollouts (
    rollout_id TEXT PRIMARY KEY,
    service TEXT NOT NULL,
    phase TEXT NOT NULL,
    archived INTEGER NOT NULL DEFAULT 0,
    body TEXT NOT NULL,
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL
)
"""


class SQLiteRolloutStore(RolloutStore):
    """SQLite-backed store; survives controller restarts."""

    def __init__(self, db_path: str = "rollouts.db") -> None:
        self._db_path = db_path
        self._lock = threading.Lock()
        with closing(self._connect()) as conn, conn:
            conn.execute(_SCHEMA)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_rollouts_service ON rollouts(service, archived)"
            )
        logger.debug("Rollout store ready at %s", db_path)

    @property
    def db_path(self) -> str:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self._db_path, timeout=30)

    def save(self, record: RolloutRecord) -> None:
        now = time.time()
        body = record.model_copy(update={"updated_at": now}).model_dump_json()
        with self._lock, closing(self._connect()) as conn, conn:
            conn.execute(
                "INSERT INTO rollouts "
                "(rollout_id, service, phase, archived, body, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(rollout_id) DO UPDATE SET "
                "phase = excluded.phase, archived = excluded.archived, "
                "body = excluded.body, updated_at = excluded.updated_at",
                (
                    record.rollout_id,
                    record.spec.name,
                    record.state.phase.value,
                    int(record.archived),
                    body,
                    record.state.created_at,
                    now,
                ),
            )

    def load(self, rollout_id: str) -> RolloutRecord:
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT body FROM rollouts WHERE rollout_id = ?", (rollout_id,)
            ).fetchone()
        if row is None:
            raise RolloutNotFoundError(rollout_id)
        return _decode(rollout_id, row[0])

    def archive(self, rollout_id: str) -> None:
        record = self.load(rollout_id)
        self.save(record.model_copy(update={"archived": True}))

    def active_ids(self) -> List[str]:
        with closing(self._connect()) as conn:
            rows = conn.execute(
                "SELECT rollout_id FROM rollouts WHERE archived = 0 ORDER BY created_at"
            ).fetchall()
        return [r[0] for r in rows]

    def all_ids(self) -> List[str]:
        with closing(self._connect()) as conn:
            rows = conn.execute("SELECT rollout_id FROM rollouts ORDER BY created_at").fetchall()
        return [r[0] for r in rows]

    def active_for_service(self, service: str) -> Optional[str]:
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT rollout_id FROM rollouts WHERE service = ? AND archived = 0",
                (service,),
            ).fetchone()
        return row[0] if row else None

    def exists(self, rollout_id: str) -> bool:
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT 1 FROM rollouts WHERE rollout_id = ?", (rollout_id,)
            ).fetchone()
        return row is not None
