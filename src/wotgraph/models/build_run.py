"""Build run history records.

A [BuildRun][wotgraph.models.build_run.BuildRun] is one attempt to rebuild
the trust graph. Its id doubles as the *generation* tag on the
``graph_node`` rows the attempt produced, and the newest ``COMPLETED`` run
names the generation readers see.

Construction enforces the status invariants, so a row that violates them
(for example a ``RUNNING`` run with a ``completed_at``) never becomes a
model instance:

* ``completed_at`` is ``None`` exactly when the status is ``RUNNING``.
* ``error_message`` is only set on ``FAILED`` runs.
* ``nodes_count`` is only set on ``COMPLETED`` runs.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ._validation import (
    validate_non_negative_int,
    validate_optional_str,
    validate_timestamp,
)
from .constants import BuildStatus


@dataclass(frozen=True, slots=True)
class BuildRun:
    """A single row of the ``build_run`` table.

    Attributes:
        id: Database identifier, also the generation tag of produced nodes.
        status: Current [BuildStatus][wotgraph.models.constants.BuildStatus].
        started_at: Unix timestamp when the run was created.
        completed_at: Unix timestamp of the terminal transition.
        seeders_count: Seeders loaded for the run, once known.
        nodes_count: Nodes written by a ``COMPLETED`` run.
        error_message: Failure description of a ``FAILED`` run.
    """

    id: int
    status: BuildStatus
    started_at: int
    completed_at: int | None = None
    seeders_count: int | None = None
    nodes_count: int | None = None
    error_message: str | None = None

    def __post_init__(self) -> None:
        validate_non_negative_int(self.id, "id")
        object.__setattr__(self, "status", BuildStatus(self.status))
        validate_timestamp(self.started_at, "started_at")

        if self.completed_at is not None:
            validate_timestamp(self.completed_at, "completed_at")
            if self.completed_at < self.started_at:
                raise ValueError("completed_at must not precede started_at")
        if (self.completed_at is None) != (self.status is BuildStatus.RUNNING):
            raise ValueError(f"completed_at must be set iff status is terminal ({self.status})")

        for name in ("seeders_count", "nodes_count"):
            value = getattr(self, name)
            if value is not None:
                validate_non_negative_int(value, name)
        if self.nodes_count is not None and self.status is not BuildStatus.COMPLETED:
            raise ValueError("nodes_count is only recorded for COMPLETED runs")

        validate_optional_str(self.error_message, "error_message")
        if self.error_message is not None and self.status is not BuildStatus.FAILED:
            raise ValueError("error_message is only recorded for FAILED runs")

    @property
    def duration(self) -> int | None:
        """Seconds between start and terminal transition, ``None`` while running."""
        if self.completed_at is None:
            return None
        return self.completed_at - self.started_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
            "seedersCount": self.seeders_count,
            "nodesCount": self.nodes_count,
            "errorMessage": self.error_message,
        }
