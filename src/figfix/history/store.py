"""SQLite storage for AutoFix history records.

The database lives at ``{workspace}/.figfix/history.db``. One row per
executed batch; the item results and rollback diffs travel together in a
single payload column, Fernet-encrypted unless ``store.encrypt`` is off.

The store is the only place a record's status changes. Every change is a
compare-and-set against the expected source status, following::

    PENDING -> EXECUTING -> COMPLETED -> ROLLED_BACK
                         \\-> FAILED

``FAILED`` and ``ROLLED_BACK`` are terminal.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any

from figfix.core.config import FigFixConfig, get_figfix_dir, load_config
from figfix.core.crypto import KEY_FILE, PayloadCipher
from figfix.core.errors import InvalidStateError
from figfix.core.models import (
    BatchKind,
    FixStatus,
    HistoryPage,
    HistoryRecord,
    ItemResult,
    StoredDiff,
    utcnow,
)

logger = logging.getLogger(__name__)

TRANSITIONS: dict[FixStatus, frozenset[FixStatus]] = {
    FixStatus.PENDING: frozenset({FixStatus.EXECUTING}),
    FixStatus.EXECUTING: frozenset({FixStatus.COMPLETED, FixStatus.FAILED}),
    FixStatus.COMPLETED: frozenset({FixStatus.ROLLED_BACK}),
    FixStatus.FAILED: frozenset(),
    FixStatus.ROLLED_BACK: frozenset(),
}

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS fix_history (
    id               TEXT PRIMARY KEY,
    project_id       TEXT NOT NULL,
    actor_id         TEXT NOT NULL DEFAULT '',
    kind             TEXT NOT NULL,
    status           TEXT NOT NULL,
    violation_ids    TEXT NOT NULL,
    fixed_violations TEXT NOT NULL DEFAULT '[]',
    before_score     REAL NOT NULL,
    after_score      REAL,
    delete_comments  INTEGER NOT NULL DEFAULT 0,
    payload          BLOB NOT NULL,
    encrypted        INTEGER NOT NULL DEFAULT 0,
    executed_at      TEXT NOT NULL,
    completed_at     TEXT,
    rolled_back_at   TEXT
);

CREATE INDEX IF NOT EXISTS idx_history_project ON fix_history(project_id);
CREATE INDEX IF NOT EXISTS idx_history_status ON fix_history(status);
CREATE INDEX IF NOT EXISTS idx_history_executed ON fix_history(executed_at);
"""


def check_transition(current: FixStatus, target: FixStatus) -> None:
    """Raise :class:`InvalidStateError` unless ``current -> target`` is legal."""
    if target not in TRANSITIONS[current]:
        raise InvalidStateError(
            f"Cannot move history record from {current.value} to {target.value}"
        )


class HistoryStore:
    """Thread-safe SQLite store for :class:`HistoryRecord` rows.

    Usage::

        store = HistoryStore(workspace)
        store.begin(record)       # PENDING -> EXECUTING
        store.complete(record)    # EXECUTING -> COMPLETED / FAILED
        page = store.list("project-1", limit=20)
    """

    def __init__(
        self,
        workspace: Path | None = None,
        db_path: Path | None = None,
        encrypt: bool | None = None,
        config: FigFixConfig | None = None,
    ) -> None:
        self._figfix_dir = get_figfix_dir(workspace)
        cfg = config or load_config(workspace)
        if db_path is None:
            if cfg.store.db_path:
                # Relative paths are taken from the workspace root.
                db_path = self._figfix_dir.parent / cfg.store.db_path
            else:
                db_path = self._figfix_dir / "history.db"
        self._db_path = db_path
        self._encrypt = cfg.store.encrypt if encrypt is None else encrypt

        self._lock = threading.Lock()
        self._init_db()
        # Never mint a new key over rows sealed with the old one.
        self._cipher = PayloadCipher(
            self._figfix_dir / KEY_FILE, create=not self._has_encrypted_rows()
        )

    @property
    def db_path(self) -> Path:
        return self._db_path

    # ------------------------------------------------------------------
    # Database bootstrap
    # ------------------------------------------------------------------

    def _init_db(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.executescript(_SCHEMA_SQL)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=10)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.row_factory = sqlite3.Row
        return conn

    def _has_encrypted_rows(self) -> bool:
        with self._connect() as conn:
            row = conn.execute("SELECT 1 FROM fix_history WHERE encrypted = 1 LIMIT 1").fetchone()
        return row is not None

    # ------------------------------------------------------------------
    # Payload helpers
    # ------------------------------------------------------------------

    def _encode_payload(self, record: HistoryRecord) -> bytes:
        raw = json.dumps({
            "items": [item.to_dict() for item in record.items],
            "diffs": [diff.to_dict() for diff in record.diffs],
        }).encode("utf-8")
        if self._encrypt:
            return self._cipher.encrypt(raw)
        return raw

    def _decode_payload(self, history_id: str, blob: bytes, encrypted: bool) -> dict[str, Any]:
        raw = self._cipher.decrypt(blob, f"history {history_id}") if encrypted else blob
        return json.loads(raw.decode("utf-8"))

    def _row_to_record(self, row: sqlite3.Row) -> HistoryRecord:
        payload = self._decode_payload(row["id"], row["payload"], bool(row["encrypted"]))
        return HistoryRecord(
            id=row["id"],
            project_id=row["project_id"],
            actor_id=row["actor_id"],
            kind=BatchKind(row["kind"]),
            status=FixStatus(row["status"]),
            violation_ids=json.loads(row["violation_ids"]),
            fixed_violations=json.loads(row["fixed_violations"]),
            before_score=row["before_score"],
            after_score=row["after_score"],
            delete_comments=bool(row["delete_comments"]),
            items=[ItemResult.from_dict(i) for i in payload.get("items", [])],
            diffs=[StoredDiff.from_dict(d) for d in payload.get("diffs", [])],
            executed_at=datetime.fromisoformat(row["executed_at"]),
            completed_at=datetime.fromisoformat(row["completed_at"]) if row["completed_at"] else None,
            rolled_back_at=datetime.fromisoformat(row["rolled_back_at"]) if row["rolled_back_at"] else None,
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def begin(self, record: HistoryRecord) -> HistoryRecord:
        """Persist a new record and move it from PENDING to EXECUTING."""
        check_transition(record.status, FixStatus.EXECUTING)
        record.status = FixStatus.EXECUTING

        with self._lock, self._connect() as conn:
            conn.execute(
                "INSERT INTO fix_history (id, project_id, actor_id, kind, status, violation_ids, "
                "fixed_violations, before_score, after_score, delete_comments, payload, encrypted, "
                "executed_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    record.id,
                    record.project_id,
                    record.actor_id,
                    record.kind.value,
                    record.status.value,
                    json.dumps(record.violation_ids),
                    json.dumps(record.fixed_violations),
                    record.before_score,
                    record.after_score,
                    1 if record.delete_comments else 0,
                    self._encode_payload(record),
                    1 if self._encrypt else 0,
                    record.executed_at.isoformat(),
                ),
            )
        logger.debug("History %s -> EXECUTING", record.id)
        return record

    def complete(self, record: HistoryRecord) -> HistoryRecord:
        """Write the finished batch and move it from EXECUTING to its final status.

        ``record.status`` must already be COMPLETED or FAILED.
        """
        check_transition(FixStatus.EXECUTING, record.status)
        targeted = set(record.violation_ids)
        if not set(record.fixed_violations) <= targeted:
            raise ValueError(f"History {record.id}: fixed violations outside the targeted set")
        fixed = set(record.fixed_violations)
        if any(diff.violation_id not in fixed for diff in record.diffs):
            raise ValueError(f"History {record.id}: diff stored for an item that did not succeed")

        if record.completed_at is None:
            record.completed_at = utcnow()

        with self._lock, self._connect() as conn:
            cur = conn.execute(
                "UPDATE fix_history SET status = ?, fixed_violations = ?, after_score = ?, "
                "payload = ?, encrypted = ?, completed_at = ? WHERE id = ? AND status = ?",
                (
                    record.status.value,
                    json.dumps(record.fixed_violations),
                    record.after_score,
                    self._encode_payload(record),
                    1 if self._encrypt else 0,
                    record.completed_at.isoformat(),
                    record.id,
                    FixStatus.EXECUTING.value,
                ),
            )
            if cur.rowcount == 0:
                raise InvalidStateError(f"History {record.id} is not EXECUTING")
        logger.debug("History %s -> %s", record.id, record.status.value)
        return record

    def mark_failed(self, history_id: str) -> None:
        """Abandon an in-flight record after an internal error."""
        self._transition(history_id, FixStatus.EXECUTING, FixStatus.FAILED, completed_at=utcnow())

    def mark_rolled_back(self, history_id: str) -> datetime:
        """Move a COMPLETED record to ROLLED_BACK and return the rollback time."""
        stamp = utcnow()
        self._transition(history_id, FixStatus.COMPLETED, FixStatus.ROLLED_BACK, rolled_back_at=stamp)
        return stamp

    def _transition(
        self,
        history_id: str,
        source: FixStatus,
        target: FixStatus,
        **stamps: datetime,
    ) -> None:
        check_transition(source, target)
        assignments = "".join(f", {column} = ?" for column in stamps)
        params: list[Any] = [target.value]
        params.extend(value.isoformat() for value in stamps.values())
        params.extend([history_id, source.value])

        with self._lock, self._connect() as conn:
            cur = conn.execute(
                f"UPDATE fix_history SET status = ?{assignments} WHERE id = ? AND status = ?",
                params,
            )
            if cur.rowcount == 0:
                row = conn.execute(
                    "SELECT status FROM fix_history WHERE id = ?", (history_id,)
                ).fetchone()
                if row is None:
                    raise InvalidStateError(f"History {history_id} does not exist")
                raise InvalidStateError(
                    f"History {history_id} is {row['status']}, expected {source.value}"
                )
        logger.debug("History %s %s -> %s", history_id, source.value, target.value)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, history_id: str) -> HistoryRecord | None:
        """Retrieve a single record by id."""
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM fix_history WHERE id = ?", (history_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_record(row)

    def list(
        self,
        project_id: str,
        *,
        status: FixStatus | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> HistoryPage:
        """Return a page of a project's records, newest first."""
        where = " WHERE project_id = ?"
        params: list[Any] = [project_id]
        if status is not None:
            where += " AND status = ?"
            params.append(status.value)

        with self._lock, self._connect() as conn:
            total = conn.execute(
                "SELECT COUNT(*) AS cnt FROM fix_history" + where, params
            ).fetchone()["cnt"]
            rows = conn.execute(
                "SELECT * FROM fix_history" + where
                + " ORDER BY executed_at DESC, rowid DESC LIMIT ? OFFSET ?",
                [*params, limit, offset],
            ).fetchall()

        return HistoryPage(
            records=[self._row_to_record(row) for row in rows],
            total=total,
            limit=limit,
            offset=offset,
        )
