"""Pass scheduling: single-flight guard, timer triggers and batching policy.

The scheduler decides *whether* a pass may run (configuration, network
policy, battery), *how aggressively* it runs (parallel batches on an
unconstrained link, small sequential batches with pauses on a constrained
one), and keeps a live :class:`SyncStatus` for observers.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from pydantic import BaseModel

from kb_sync.config import NetworkClass, NetworkPolicy, SyncPolicy
from kb_sync.errors import KBSyncError, LocalReadError, SyncInProgressError
from kb_sync.sync.engine import DocumentResult, ReconciliationEngine
from kb_sync.sync.ports import DeviceConditions, DocumentSource, LocalDocument

logger = logging.getLogger(__name__)


class SyncStatus(BaseModel):
    """Progress and outcome of the current (or last) pass."""

    succeeded_operations: int = 0
    total_operations: int = 0
    is_syncing: bool = False
    had_error: bool = False
    documents_total: int = 0
    documents_done: int = 0
    documents_skipped: int = 0
    skipped_reason: str = ""
    trigger: str = ""
    last_finished_at: datetime | None = None

    def label(self, configured: bool = True) -> str:
        """Render the compact status-bar form."""
        if self.is_syncing:
            return f"KB: {self.documents_done}/{self.documents_total}"
        if self.had_error:
            return "KB: ✗"
        if not configured:
            return "KB: ⚠"
        return "KB: ✓"


class SingleFlight:
    """At most one holder at a time; contenders are rejected, not queued.

    Each acquisition gets a generation number so that a holder whose lock
    was force-released cannot release a later holder's lock on exit.
    """

    def __init__(self) -> None:
        self._generation = itertools.count(1)
        self._holder: int | None = None

    @property
    def held(self) -> bool:
        return self._holder is not None

    @contextmanager
    def hold(self) -> Iterator[None]:
        if self._holder is not None:
            raise SyncInProgressError("Sync already in progress, please wait")
        token = next(self._generation)
        self._holder = token
        logger.debug("Sync lock acquired (#%d)", token)
        try:
            yield
        finally:
            if self._holder == token:
                self._holder = None
                logger.debug("Sync lock released (#%d)", token)

    def force_release(self) -> bool:
        """Drop the lock regardless of holder. Returns whether it was held."""
        was_held = self._holder is not None
        if was_held:
            logger.warning("Force releasing sync lock (#%d)", self._holder)
        self._holder = None
        return was_held


class SyncScheduler:
    """Runs reconciliation passes over the whole document source.

    Args:
        engine: Per-document reconciliation.
        source: Local document listing.
        conditions: Network/power state, read fresh at each pass start.
        policy_provider: Returns the ``SyncPolicy`` used when a pass is
            started without an explicit one.
        preflight: Raises ``ConfigurationError`` when the service is not
            configured; evaluated before every pass.
        sleep: Awaitable sleep, injectable for tests.
    """

    def __init__(
        self,
        engine: ReconciliationEngine,
        source: DocumentSource,
        conditions: DeviceConditions,
        policy_provider: Callable[[], SyncPolicy] = SyncPolicy,
        *,
        preflight: Callable[[], None] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._engine = engine
        self._source = source
        self._conditions = conditions
        self._policy_provider = policy_provider
        self._preflight = preflight
        self._sleep = sleep
        self._guard = SingleFlight()
        self._status = SyncStatus()
        self._timer: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Status / guard
    # ------------------------------------------------------------------

    @property
    def status(self) -> SyncStatus:
        return self._status.model_copy()

    @property
    def engine(self) -> ReconciliationEngine:
        return self._engine

    def is_sync_in_progress(self) -> bool:
        return self._guard.held

    def force_release(self) -> bool:
        """Emergency unlock for a pass that will never finish."""
        released = self._guard.force_release()
        self._status.is_syncing = False
        return released

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    async def run_pass(
        self, *, trigger: str = "manual", policy: SyncPolicy | None = None
    ) -> SyncStatus:
        """Run one full reconciliation pass.

        Raises:
            SyncInProgressError: If another pass holds the guard. The
                running pass and its counters are not affected.
            ConfigurationError: If the service is not configured.
            KBSyncError: If the pass could not start (e.g. listing failed).
        """
        with self._guard.hold():
            try:
                return await self._run(trigger, policy)
            except KBSyncError:
                self._status.had_error = True
                raise
            finally:
                self._status.is_syncing = False

    async def trigger(self, trigger: str = "manual") -> SyncStatus | None:
        """Run a pass, logging rejections and pass-level failures instead of raising."""
        try:
            return await self.run_pass(trigger=trigger)
        except SyncInProgressError:
            logger.info("%s sync skipped: a pass is already running", trigger.capitalize())
        except KBSyncError as exc:
            logger.error("%s sync failed: %s", trigger.capitalize(), exc)
        return None

    async def _run(self, trigger: str, policy: SyncPolicy | None) -> SyncStatus:
        if self._preflight is not None:
            self._preflight()
        policy = policy or self._policy_provider()

        network = self._conditions.network_class()
        constrained = network == NetworkClass.CONSTRAINED
        reason = self._gate(policy, constrained)
        if reason:
            logger.info("Sync pass skipped: %s", reason)
            self._status = SyncStatus(
                skipped_reason=reason,
                trigger=trigger,
                last_finished_at=datetime.now(timezone.utc),
            )
            return self.status

        self._status = SyncStatus(is_syncing=True, trigger=trigger)

        try:
            documents = list(await self._source.list_documents())
        except OSError as exc:
            raise KBSyncError(f"Cannot list local documents: {exc}") from exc

        discovered = {doc.identity for doc in documents}
        vanished = sorted(self._engine.state.all_ids() - discovered)
        work: list[LocalDocument | str] = [*documents, *vanished]
        self._status.documents_total = len(work)

        batch_size = policy.constrained_batch_size if constrained else policy.batch_size
        max_bytes = (
            policy.constrained_max_document_bytes if constrained else policy.max_document_bytes
        )
        logger.info(
            "Sync pass (%s) started: %d document(s), %d removed locally, %s network, batch size %d",
            trigger, len(documents), len(vanished), network.value, batch_size,
        )

        semaphore = asyncio.Semaphore(policy.max_concurrency)
        with self._engine.directory.pass_scope():
            for index, start in enumerate(range(0, len(work), batch_size)):
                batch = work[start:start + batch_size]
                if constrained:
                    if index and policy.constrained_pause_seconds:
                        await self._sleep(policy.constrained_pause_seconds)
                    for item in batch:
                        await self._process(item, policy.context_name, max_bytes)
                else:
                    await asyncio.gather(
                        *(
                            self._bounded(semaphore, item, policy.context_name, max_bytes)
                            for item in batch
                        )
                    )

        self._status.is_syncing = False
        self._status.last_finished_at = datetime.now(timezone.utc)
        logger.info(
            "Sync completed: %d/%d operations%s",
            self._status.succeeded_operations,
            self._status.total_operations,
            " (with errors)" if self._status.had_error else "",
        )
        return self.status

    def _gate(self, policy: SyncPolicy, constrained: bool) -> str:
        if constrained and policy.network_policy == NetworkPolicy.NEVER_CONSTRAINED:
            return "network is constrained and policy forbids syncing on it"
        if policy.min_battery_percent > 0:
            battery = self._conditions.battery_percent()
            if (
                battery is not None
                and battery < policy.min_battery_percent
                and not self._conditions.is_charging()
            ):
                return (
                    f"battery at {battery:.0f}% is below "
                    f"{policy.min_battery_percent:.0f}%"
                )
        return ""

    async def _bounded(
        self,
        semaphore: asyncio.Semaphore,
        item: LocalDocument | str,
        context_name: str,
        max_bytes: int,
    ) -> None:
        async with semaphore:
            await self._process(item, context_name, max_bytes)

    async def _process(
        self, item: LocalDocument | str, context_name: str, max_bytes: int
    ) -> None:
        identity = item if isinstance(item, str) else item.identity
        result: DocumentResult | None = None
        try:
            if isinstance(item, str):
                result = await self._engine.remove(item)
            else:
                result = await self._engine.reconcile(
                    item, context_name=context_name, max_bytes=max_bytes
                )
        except LocalReadError as exc:
            logger.warning("Skipping %s: %s", identity, exc.reason)
            self._status.documents_skipped += 1
        except KBSyncError as exc:
            logger.error("Failed to sync %s: %s", identity, exc)
            self._status.total_operations += 1
            self._status.had_error = True
        except Exception:
            logger.exception("Unexpected error while syncing %s", identity)
            self._status.total_operations += 1
            self._status.had_error = True
        finally:
            self._status.documents_done += 1

        if result is not None:
            self._status.total_operations += result.attempted
            self._status.succeeded_operations += result.succeeded
            if result.failed:
                logger.error("Partially synced %s: %s", identity, result.error)
                self._status.had_error = True

    # ------------------------------------------------------------------
    # Timer / lifecycle
    # ------------------------------------------------------------------

    def start_auto_sync(self, interval_seconds: float) -> None:
        """Trigger a pass every *interval_seconds* until stopped.

        Must be called from a running event loop.  A non-positive interval
        disables auto-sync.
        """
        self.stop_auto_sync()
        if interval_seconds <= 0:
            return
        self._timer = asyncio.get_running_loop().create_task(
            self._auto_sync_loop(interval_seconds), name="kb-sync-auto-sync"
        )
        logger.info("Auto-sync started with %.0fs interval", interval_seconds)

    def stop_auto_sync(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def _auto_sync_loop(self, interval_seconds: float) -> None:
        while True:
            await self._sleep(interval_seconds)
            if self._guard.held:
                logger.debug("Auto-sync skipped: a pass is already running")
                continue
            await self.trigger("timer")

    async def shutdown(self) -> None:
        """Stop the timer and clear the guard so a restart is never blocked."""
        timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
            try:
                await timer
            except asyncio.CancelledError:
                pass
        if self._guard.force_release():
            logger.info("Shut down during a sync pass, lock released")
        self._status = SyncStatus()
