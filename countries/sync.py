"""
The refresh pipeline: fetch both sources, normalize, upsert in one
transaction, then publish the summary image.

A run moves through ``RefreshState`` and ends either ``COMMITTED`` or
``ABORTED``. Only failures before the commit can abort a run; publishing
the summary afterwards is best-effort and never changes the outcome.
"""
import enum
import logging
import random
from dataclasses import dataclass, replace

from django.utils import timezone

from .exceptions import ArtifactPublishFailure, ExternalFetchFailed, NoValidData, PersistenceFailure
from .normalizer import normalize_batch
from .store import TransactionState

logger = logging.getLogger(__name__)

SUMMARY_TOP_N = 5


class RefreshState(enum.Enum):
    IDLE = 'idle'
    FETCHING_EXTERNAL = 'fetching_external'
    NORMALIZING = 'normalizing'
    PERSISTING = 'persisting'
    COMMITTED = 'committed'
    ABORTED = 'aborted'


_TRANSITIONS = {
    RefreshState.IDLE: {RefreshState.FETCHING_EXTERNAL},
    RefreshState.FETCHING_EXTERNAL: {RefreshState.NORMALIZING, RefreshState.ABORTED},
    RefreshState.NORMALIZING: {RefreshState.PERSISTING, RefreshState.ABORTED},
    RefreshState.PERSISTING: {RefreshState.COMMITTED, RefreshState.ABORTED},
    RefreshState.COMMITTED: set(),
    RefreshState.ABORTED: set(),
}


class RefreshRun:
    """State of one refresh run."""

    def __init__(self, started_at):
        self.started_at = started_at
        self.state = RefreshState.IDLE
        self.history = [RefreshState.IDLE]

    def advance(self, state):
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"illegal refresh transition {self.state.value} -> {state.value}")
        logger.debug("Refresh run %s: %s -> %s", self.started_at.isoformat(), self.state.value, state.value)
        self.state = state
        self.history.append(state)


@dataclass(frozen=True)
class RefreshRunResult:
    rows: list
    rejected: int
    run_at: object

    @property
    def accepted(self):
        return len(self.rows)


class Synchronizer:
    """
    Owns the commit/rollback decision for refresh runs.

    The source adapter, store and publisher are injected; a single instance
    is shared by every request, so per-run state lives in ``RefreshRun``.
    """

    def __init__(self, source, store, publisher=None, rng=None, clock=timezone.now):
        self.source = source
        self.store = store
        self.publisher = publisher
        self.rng = rng or random.Random()
        self.clock = clock

    def refresh(self):
        run = RefreshRun(started_at=self.clock())
        logger.info("Refreshing countries...")

        run.advance(RefreshState.FETCHING_EXTERNAL)
        try:
            payload = self.source.fetch()
        except ExternalFetchFailed:
            run.advance(RefreshState.ABORTED)
            raise

        run.advance(RefreshState.NORMALIZING)
        batch = normalize_batch(payload.countries, payload.rates, run.started_at, rng=self.rng)
        if not batch.rows:
            run.advance(RefreshState.ABORTED)
            logger.warning("No valid countries to insert/update (%d rejected)", batch.rejected)
            raise NoValidData(batch.rejected)

        run.advance(RefreshState.PERSISTING)
        try:
            rows, run_at = self._persist(batch.rows, run.started_at)
        except PersistenceFailure:
            run.advance(RefreshState.ABORTED)
            raise
        run.advance(RefreshState.COMMITTED)

        logger.info(
            "Database updated with %d countries (%d rejected)", len(rows), batch.rejected
        )
        result = RefreshRunResult(rows=rows, rejected=batch.rejected, run_at=run_at)
        self._publish_summary(result)
        return result

    def _persist(self, rows, run_at):
        """Upsert ``rows`` in one transaction; returns the rows and run time written.

        Rows that do not exist yet cannot be locked, so two overlapping runs
        that both insert the same new country are ordered by the unique index
        alone and the later commit wins.
        """
        txn = self.store.transaction()
        try:
            txn.begin()
            # Never move a row's last_refreshed_at backwards. Locking the
            # existing rows first makes an overlapping run wait for ours.
            seen = self.store.lock_refresh_times(row.name_key for row in rows)
            seen.append(self.store.latest_refresh())
            latest = max((at for at in seen if at is not None), default=None)
            if latest is not None and latest > run_at:
                run_at = latest
                rows = [replace(row, last_refreshed_at=run_at) for row in rows]
            self.store.upsert_batch(rows)
            txn.commit()
        except Exception as exc:
            if txn.state is TransactionState.OPEN:
                txn.rollback()
                logger.info("Refresh transaction rolled back")
            logger.exception("Refresh failed while persisting countries")
            raise PersistenceFailure("could not persist refreshed countries") from exc
        return rows, run_at

    def _publish_summary(self, result):
        if self.publisher is None:
            logger.warning("No summary publisher configured; skipping summary image")
            return
        try:
            self.publisher.publish(
                total=self.store.total_count(),
                top=self.store.top_by_gdp(SUMMARY_TOP_N),
                timestamp=result.run_at,
            )
        except ArtifactPublishFailure:
            logger.exception("Summary image was not published")
        except Exception:
            logger.exception("Summary image step failed after commit")
