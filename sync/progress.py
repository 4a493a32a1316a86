"""
Progress reporting and result accumulation for sync runs.

Each table moves through a fixed phase sequence::

    connecting -> fetching -> inserting -> marking -> completed
                                                  \\-> failed (from any phase)

``inserting`` and ``marking`` may be skipped; going backwards or leaving a
terminal phase raises ``SyncError``.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from core.exceptions import SyncError
from models.base import SyncMode, SyncPhase
from schemas.results import SyncProgress, SyncResult, TableSyncResult

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[SyncProgress], None]

FAILED_TABLES_MESSAGE = "Some tables failed to sync"

PHASE_PERCENT = {
    SyncPhase.CONNECTING: 0,
    SyncPhase.FETCHING: 0,
    SyncPhase.INSERTING: 25,
    SyncPhase.MARKING: 75,
    SyncPhase.COMPLETED: 100,
}

ALLOWED_TRANSITIONS = {
    SyncPhase.CONNECTING: {SyncPhase.FETCHING, SyncPhase.FAILED},
    SyncPhase.FETCHING: {SyncPhase.INSERTING, SyncPhase.COMPLETED, SyncPhase.FAILED},
    SyncPhase.INSERTING: {SyncPhase.MARKING, SyncPhase.COMPLETED, SyncPhase.FAILED},
    SyncPhase.MARKING: {SyncPhase.COMPLETED, SyncPhase.FAILED},
    SyncPhase.COMPLETED: set(),
    SyncPhase.FAILED: set(),
}


class ProgressReporter:
    """Delivers progress events to an optional callback."""

    def __init__(self, callback: Optional[ProgressCallback] = None):
        self.callback = callback

    def emit(self, progress: SyncProgress):
        if self.callback is None:
            return
        try:
            self.callback(progress)
        except Exception as e:
            # A broken callback must not fail the sync
            logger.warning(f"Progress callback raised for {progress.table} ({progress.phase}): {e}")


class TableProgress:
    """Phase state machine for one table, emitting an event per transition."""

    def __init__(self, table: str, reporter: ProgressReporter):
        self.table = table
        self.reporter = reporter
        self.phase = SyncPhase.CONNECTING
        self.percent = 0
        self.records_processed = 0
        self.total_records: Optional[int] = None
        self.reporter.emit(SyncProgress(table=table, phase=self.phase))

    def advance(
        self,
        phase: SyncPhase,
        records_processed: int = 0,
        total_records: Optional[int] = None
    ):
        if phase not in ALLOWED_TRANSITIONS[self.phase]:
            raise SyncError(
                f"Illegal phase transition for {self.table}: {self.phase} -> {phase}",
                records_synced=records_processed,
                context={"table": self.table, "from": str(self.phase), "to": str(phase)}
            )

        self.phase = phase
        self.records_processed = records_processed
        if total_records is not None:
            self.total_records = total_records
        if phase != SyncPhase.FAILED:
            self.percent = PHASE_PERCENT[phase]

        self.reporter.emit(SyncProgress(
            table=self.table,
            phase=phase,
            records_processed=records_processed,
            total_records=self.total_records,
            percent=self.percent,
        ))

    @property
    def finished(self) -> bool:
        return self.phase in (SyncPhase.COMPLETED, SyncPhase.FAILED)


class ResultAccumulator:
    """Collects per-table results and builds the final ``SyncResult``."""

    def __init__(self, mode: SyncMode):
        self.mode = mode
        self.started = time.monotonic()
        self.tables: Dict[str, TableSyncResult] = {}

    def add(self, result: TableSyncResult):
        self.tables[result.source_table] = result

    def build(self) -> SyncResult:
        success = all(t.success for t in self.tables.values())
        return SyncResult(
            success=success,
            mode=str(self.mode),
            tables=dict(self.tables),
            duration_ms=elapsed_ms(self.started),
            completed_at=datetime.now(timezone.utc).isoformat(),
            error=None if success else FAILED_TABLES_MESSAGE,
        )


def elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
