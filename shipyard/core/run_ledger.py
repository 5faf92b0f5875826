"""Append-only, hash-chained Run Ledger backed by SQLite.

The Run Ledger is the source of truth.  ``shipyard status`` is a projection
of this ledger and never computes state of its own.

Design:
- Append-only: only ``append()`` and ``append_run_created()`` write; no
  update, no delete.
- Hash-chained: each entry includes SHA-256 of the previous entry of its run.
- Appends run in a ``BEGIN IMMEDIATE`` transaction so concurrent writers
  (parallel stages, a ``cancel`` from another process) keep the chain linear.
- WAL journal mode for concurrent readers.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from pathlib import Path

from shipyard.core.hasher import compute_entry_hash
from shipyard.errors import RunNumberInUseError
from shipyard.models.ledger import RUN_SCOPE, LedgerEntry


# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_LEDGER = """
CREATE TABLE IF NOT EXISTS run_ledger (
    id                    INTEGER PRIMARY KEY AUTOINCREMENT,
    entry_id              TEXT NOT NULL UNIQUE,
    run_id                TEXT NOT NULL,
    stage_id              TEXT NOT NULL,
    state_transition      TEXT NOT NULL,
    timestamp_utc         TEXT NOT NULL,
    input_hash            TEXT NOT NULL DEFAULT '',
    output_hash           TEXT NOT NULL DEFAULT '',
    artifact_refs_json    TEXT NOT NULL DEFAULT '[]',
    detail_json           TEXT NOT NULL DEFAULT '{}',
    schema_version        TEXT NOT NULL,
    previous_entry_hash   TEXT NOT NULL DEFAULT '',
    entry_hash            TEXT NOT NULL UNIQUE
);
"""

_CREATE_IDX_RUN = """
CREATE INDEX IF NOT EXISTS idx_run_id ON run_ledger(run_id, id);
"""

_CREATE_IDX_RUN_STAGE = """
CREATE INDEX IF NOT EXISTS idx_run_stage ON run_ledger(run_id, stage_id, id);
"""

_COLUMNS = (
    "id, entry_id, run_id, stage_id, state_transition, timestamp_utc, "
    "input_hash, output_hash, artifact_refs_json, detail_json, "
    "schema_version, previous_entry_hash, entry_hash"
)


class LedgerIntegrityError(RuntimeError):
    """Raised when the hash chain is broken."""


class RunLedger:
    """Append-only, hash-chained Run Ledger.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created if it does not exist.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            str(self._db_path),
            check_same_thread=False,
            timeout=30.0,
            isolation_level=None,  # explicit transactions only
        )
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_schema(self) -> None:
        conn = self._connect()
        try:
            conn.execute(_CREATE_LEDGER)
            conn.execute(_CREATE_IDX_RUN)
            conn.execute(_CREATE_IDX_RUN_STAGE)
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Core: append-only write
    # ------------------------------------------------------------------

    def append(self, entry: LedgerEntry) -> LedgerEntry:
        """Append an entry to the ledger, computing hash chain links.

        Returns the entry with ``previous_entry_hash`` and ``entry_hash`` set.
        There is no update or delete.
        """
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                sealed = self._seal_and_insert(conn, entry)
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()
        return sealed

    def append_run_created(
        self, entry: LedgerEntry, pipeline: str, run_number: str | None = None
    ) -> LedgerEntry:
        """Append a run's creation entry and claim its run number.

        The number is checked (or, when *run_number* is None, allocated as one
        more than the pipeline's highest numeric run number) under the same
        write lock that appends the entry, so two runs of one pipeline never
        hold the same number.  ``pipeline`` and ``run_number`` are written
        into the entry's detail.

        Raises RunNumberInUseError if *run_number* was already claimed.
        """
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                taken = self._run_numbers(conn, entry.state_transition, pipeline)
                if run_number is None:
                    numeric = [int(n) for n in taken if n.isdigit()]
                    run_number = str(max(numeric, default=0) + 1)
                elif run_number in taken:
                    raise RunNumberInUseError(
                        f"Run number {run_number} was already used by pipeline {pipeline}; "
                        "image tags must be unique per run"
                    )
                claimed = entry.model_copy(
                    update={
                        "detail": {**entry.detail, "pipeline": pipeline, "run_number": run_number}
                    }
                )
                sealed = self._seal_and_insert(conn, claimed)
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()
        return sealed

    @staticmethod
    def _run_numbers(conn: sqlite3.Connection, created: str, pipeline: str) -> set[str]:
        rows = conn.execute(
            "SELECT detail_json FROM run_ledger WHERE stage_id = ? AND state_transition = ?",
            (RUN_SCOPE, created),
        ).fetchall()
        numbers = set()
        for (detail_json,) in rows:
            detail = json.loads(detail_json)
            if detail.get("pipeline") == pipeline and detail.get("run_number") is not None:
                numbers.add(str(detail["run_number"]))
        return numbers

    def _seal_and_insert(self, conn: sqlite3.Connection, entry: LedgerEntry) -> LedgerEntry:
        row = conn.execute(
            "SELECT entry_hash FROM run_ledger WHERE run_id = ? "
            "ORDER BY id DESC LIMIT 1",
            (entry.run_id,),
        ).fetchone()
        previous_hash = row[0] if row else ""

        entry_dict = entry.model_dump(mode="json")
        entry_dict["previous_entry_hash"] = previous_hash
        entry_hash = compute_entry_hash(entry_dict)

        sealed = entry.model_copy(
            update={
                "previous_entry_hash": previous_hash,
                "entry_hash": entry_hash,
            }
        )
        self._insert(conn, sealed)
        return sealed

    @staticmethod
    def _insert(conn: sqlite3.Connection, entry: LedgerEntry) -> None:
        conn.execute(
            """
            INSERT INTO run_ledger
                (entry_id, run_id, stage_id, state_transition, timestamp_utc,
                 input_hash, output_hash, artifact_refs_json, detail_json,
                 schema_version, previous_entry_hash, entry_hash)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.entry_id,
                entry.run_id,
                entry.stage_id,
                entry.state_transition,
                entry.timestamp_utc.isoformat()
                if isinstance(entry.timestamp_utc, datetime)
                else entry.timestamp_utc,
                entry.input_hash,
                entry.output_hash,
                json.dumps(entry.artifact_references),
                json.dumps(entry.model_dump(mode="json")["detail"], sort_keys=True),
                entry.schema_version,
                entry.previous_entry_hash,
                entry.entry_hash,
            ),
        )

    # ------------------------------------------------------------------
    # Query methods (read-only)
    # ------------------------------------------------------------------

    def _query(self, sql: str, params: tuple = ()) -> list[tuple]:
        conn = self._connect()
        try:
            return conn.execute(sql, params).fetchall()
        finally:
            conn.close()

    def get_latest(self, run_id: str) -> LedgerEntry | None:
        """Return the most recent ledger entry for a run, or None."""
        rows = self._query(
            f"SELECT {_COLUMNS} FROM run_ledger WHERE run_id = ? "
            "ORDER BY id DESC LIMIT 1",
            (run_id,),
        )
        return self._row_to_entry(rows[0]) if rows else None

    def get_stage_history(self, run_id: str, stage_id: str) -> list[LedgerEntry]:
        """Return all ledger entries for a specific stage in a run."""
        rows = self._query(
            f"SELECT {_COLUMNS} FROM run_ledger WHERE run_id = ? AND stage_id = ? "
            "ORDER BY id ASC",
            (run_id, stage_id),
        )
        return [self._row_to_entry(row) for row in rows]

    def get_run_entries(self, run_id: str) -> list[LedgerEntry]:
        """Return all ledger entries for a run, ordered chronologically."""
        rows = self._query(
            f"SELECT {_COLUMNS} FROM run_ledger WHERE run_id = ? ORDER BY id ASC",
            (run_id,),
        )
        return [self._row_to_entry(row) for row in rows]

    def get_all_run_ids(self) -> list[str]:
        """Return all distinct run_ids, most recently started first."""
        rows = self._query(
            "SELECT run_id FROM run_ledger GROUP BY run_id ORDER BY MIN(id) DESC"
        )
        return [row[0] for row in rows]

    def has_run(self, run_id: str) -> bool:
        rows = self._query(
            "SELECT 1 FROM run_ledger WHERE run_id = ? LIMIT 1", (run_id,)
        )
        return bool(rows)

    def has_transition(self, run_id: str, stage_id: str, state_transition: str) -> bool:
        """Return True if the run has an entry with this exact transition."""
        rows = self._query(
            "SELECT 1 FROM run_ledger WHERE run_id = ? AND stage_id = ? "
            "AND state_transition = ? LIMIT 1",
            (run_id, stage_id, state_transition),
        )
        return bool(rows)

    def get_run_scope_entries(self) -> list[LedgerEntry]:
        """Return every run-level entry across runs, newest first."""
        rows = self._query(
            f"SELECT {_COLUMNS} FROM run_ledger WHERE stage_id = ? ORDER BY id DESC",
            (RUN_SCOPE,),
        )
        return [self._row_to_entry(row) for row in rows]

    # ------------------------------------------------------------------
    # Chain verification
    # ------------------------------------------------------------------

    def verify_chain(self, run_id: str) -> bool:
        """Verify the hash chain integrity for a run.

        Walks all entries in order, recomputes each entry_hash, and
        verifies that previous_entry_hash links match.

        Returns True if the chain is valid, raises LedgerIntegrityError otherwise.
        """
        prev_hash = ""
        for entry in self.get_run_entries(run_id):
            if entry.previous_entry_hash != prev_hash:
                raise LedgerIntegrityError(
                    f"Chain broken at entry {entry.entry_id}: "
                    f"expected previous_hash={prev_hash!r}, "
                    f"got {entry.previous_entry_hash!r}"
                )

            expected_hash = compute_entry_hash(entry.model_dump(mode="json"))
            if entry.entry_hash != expected_hash:
                raise LedgerIntegrityError(
                    f"Tampered entry {entry.entry_id}: "
                    f"expected hash={expected_hash!r}, "
                    f"got {entry.entry_hash!r}"
                )

            prev_hash = entry.entry_hash

        return True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_entry(row: tuple) -> LedgerEntry:
        """Convert a SQLite row tuple to a LedgerEntry."""
        (
            _id,
            entry_id,
            run_id,
            stage_id,
            state_transition,
            timestamp_utc,
            input_hash,
            output_hash,
            artifact_refs_json,
            detail_json,
            schema_version,
            previous_entry_hash,
            entry_hash,
        ) = row
        return LedgerEntry(
            entry_id=entry_id,
            run_id=run_id,
            stage_id=stage_id,
            state_transition=state_transition,
            timestamp_utc=timestamp_utc,
            input_hash=input_hash,
            output_hash=output_hash,
            artifact_references=json.loads(artifact_refs_json),
            detail=json.loads(detail_json),
            schema_version=schema_version,
            previous_entry_hash=previous_entry_hash,
            entry_hash=entry_hash,
        )
