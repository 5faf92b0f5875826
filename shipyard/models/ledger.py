"""Run Ledger entry model: append-only, hash-chained.

The Run Ledger is the source of truth for every run:
- Append-only (no UPDATE, no DELETE)
- Hash-chained (each entry links to the previous via SHA-256)
- One entry per stage or run transition
- Scoped to run_id + stage_id; run-level entries use ``RUN_SCOPE``
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# stage_id used for run-level entries (status changes, cancellation requests)
RUN_SCOPE = "__run__"

# state_transition used to record a cancellation request
CANCEL_REQUESTED = "cancel_requested"


class LedgerEntry(BaseModel):
    """A single entry in the append-only Run Ledger."""

    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    run_id: str
    stage_id: str
    state_transition: str  # "from->to", e.g. "pending->running"
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    input_hash: str = ""
    output_hash: str = ""
    artifact_references: list[str] = []  # content addresses
    detail: dict[str, Any] = {}  # error kind, attempts, outputs, trigger...
    schema_version: str = "1"
    previous_entry_hash: str = ""
    entry_hash: str = ""  # computed on append, seals this entry

    @property
    def target_state(self) -> str | None:
        """The state on the right of ``state_transition``, if it is a transition."""
        if "->" not in self.state_transition:
            return None
        return self.state_transition.split("->", 1)[1]
