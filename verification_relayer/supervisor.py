"""
Relayer lifecycle: startup health checks, the periodic sync schedule,
operational statistics, and out-of-band control operations.
"""

import asyncio
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Sequence

import structlog

from .chain import RPC_ERRORS, ChainClient
from .config import Settings
from .contracts import (
    ProofOfHumanRegistry,
    VerificationFlagStore,
    VerificationSink,
    VerificationSource,
)
from .errors import NotRunningError
from .sync import SyncEngine, SyncResult, SyncState

logger = structlog.get_logger()


class SupervisorState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass
class OperationalStats:
    """Cumulative counters; mutated only by the supervisor after each run."""

    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    verified_users_updated: int = 0
    addresses_synced: int = 0
    addresses_skipped: int = 0
    errors: int = 0
    last_run: Optional[datetime] = None
    last_error: Optional[str] = None
    last_duration_ms: Optional[int] = None

    def record_success(self, result: SyncResult, duration_ms: int) -> None:
        self.successful_runs += 1
        self.addresses_synced += result.synced
        self.addresses_skipped += result.skipped
        self.errors += result.errors
        self.verified_users_updated += result.synced
        self.last_error = None
        self.last_duration_ms = duration_ms

    def record_failure(self, error: str, duration_ms: int) -> None:
        self.failed_runs += 1
        self.last_error = error
        self.last_duration_ms = duration_ms

    def reset_sync_counters(self) -> None:
        """Zero the counters derived from the sync state."""
        self.addresses_synced = 0
        self.addresses_skipped = 0
        self.errors = 0


@dataclass
class HealthReport:
    """Result of a dependency health check."""

    source_block: int
    target_block: int
    signer_address: str


async def connect_gateways(settings: Settings) -> tuple[ProofOfHumanRegistry, VerificationFlagStore]:
    """
    Connect both chains and bind the two contracts.

    Raises:
        ConfigError: required settings missing or malformed
        NetworkError: either RPC is unreachable or on the wrong chain
    """
    settings.require_relayer_config()

    source_client = await ChainClient.connect(
        settings.source_rpc_url,
        settings.source_chain_id,
        name="source",
        timeout=settings.rpc_timeout_seconds,
    )
    try:
        target_client = await ChainClient.connect(
            settings.target_rpc_url,
            settings.target_chain_id,
            private_key=settings.relayer_private_key,
            name="target",
            timeout=settings.rpc_timeout_seconds,
            tx_timeout=settings.tx_timeout_seconds,
            fee_bump_percent=settings.fee_bump_percent,
        )
    except Exception:
        await source_client.close()
        raise

    registry = ProofOfHumanRegistry(
        source_client,
        settings.source_contract,
        log_chunk_blocks=settings.log_query_chunk_blocks,
    )
    flag_store = VerificationFlagStore(
        target_client,
        settings.target_contract,
        gas_limit=settings.gas_limit,
        gas_headroom_percent=settings.gas_headroom_percent,
    )
    return registry, flag_store


class RelayerSupervisor:
    """
    Owns the relayer lifecycle:

    1. start(): validate config, connect both chains, health check, run once
    2. schedule a sync every sync_interval_ms until stop()
    3. record every run's outcome into OperationalStats

    Runs never overlap: scheduled and manual runs share one lock.
    """

    def __init__(
        self,
        settings: Settings,
        registry: Optional[VerificationSource] = None,
        flag_store: Optional[VerificationSink] = None,
    ):
        self.settings = settings
        self.registry = registry
        self.flag_store = flag_store
        self.sync_state = SyncState()
        self.engine: Optional[SyncEngine] = None
        self.started_at: Optional[datetime] = None

        self._state = SupervisorState.STOPPED
        self._stats = OperationalStats()
        self._run_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._schedule_task: Optional[asyncio.Task] = None
        # Gateways connected by start() are closed by close(); injected ones are not
        self._owns_gateways = False

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is SupervisorState.RUNNING

    @property
    def stats(self) -> OperationalStats:
        """Snapshot copy of the statistics."""
        return replace(self._stats)

    async def start(self) -> None:
        """
        Start the relayer.

        Raises:
            ConfigError: required settings missing, or no signer
            NetworkError: either chain unreachable
        """
        if self._state is not SupervisorState.STOPPED:
            logger.warning("supervisor_already_started", state=self._state.value)
            return

        self._state = SupervisorState.STARTING
        logger.info(
            "supervisor_starting",
            interval_ms=self.settings.sync_interval_ms,
            policy=self.settings.reconciliation_policy.value,
        )

        try:
            self.settings.require_relayer_config()
            if self.registry is None or self.flag_store is None:
                self.registry, self.flag_store = await connect_gateways(self.settings)
                self._owns_gateways = True
            await self.health_check()
        except Exception as e:
            self._state = SupervisorState.STOPPED
            logger.error("supervisor_start_failed", error=str(e), error_type=type(e).__name__)
            await self.close()
            raise

        if self._state is not SupervisorState.STARTING:
            # stop() was called while connecting
            return

        self.engine = SyncEngine(
            self.registry,
            self.flag_store,
            state=self.sync_state,
            policy=self.settings.reconciliation_policy,
            window_blocks=self.settings.discovery_window_blocks,
        )
        self._state = SupervisorState.RUNNING
        self.started_at = datetime.now(timezone.utc)

        # Run once immediately so /status reports fresh data
        await self.perform_sync_operation()

        if self._state is not SupervisorState.RUNNING:
            return

        self._stop_event.clear()
        self._schedule_task = asyncio.create_task(self._run_schedule(), name="relayer-schedule")
        self._schedule_task.add_done_callback(self._on_schedule_done)

        logger.info("supervisor_started", interval_ms=self.settings.sync_interval_ms)

    async def stop(self) -> None:
        """
        Stop the schedule. Idempotent.

        An in-flight run is allowed to finish and record its result.
        """
        if self._state in (SupervisorState.STOPPED, SupervisorState.STOPPING):
            logger.debug("supervisor_not_running", state=self._state.value)
            return

        self._state = SupervisorState.STOPPING
        logger.info("supervisor_stopping")
        self._stop_event.set()

        task = self._schedule_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            await asyncio.gather(task, return_exceptions=True)
        self._schedule_task = None

        self._state = SupervisorState.STOPPED
        logger.info("supervisor_stopped")

    async def close(self) -> None:
        """
        Close the chain connections opened by start(). Call after stop().

        Injected gateways belong to the caller and are left open.
        """
        if not self._owns_gateways:
            return

        gateways = [g for g in (self.registry, self.flag_store) if g is not None]
        self.registry = None
        self.flag_store = None
        self.engine = None
        self._owns_gateways = False

        for gateway in gateways:
            try:
                await gateway.close()
            except RPC_ERRORS as e:
                logger.warning("gateway_close_failed", gateway=gateway.name, error=str(e))
        logger.info("gateways_closed")

    async def health_check(self) -> HealthReport:
        """Check both chains respond and the signer resolves."""
        if self.registry is None or self.flag_store is None:
            raise NotRunningError("Chain gateways are not connected")

        report = HealthReport(
            source_block=await self.registry.health_check(),
            target_block=await self.flag_store.health_check(),
            signer_address=self.flag_store.signer_address(),
        )
        logger.info(
            "health_check_passed",
            source_block=report.source_block,
            target_block=report.target_block,
            signer=report.signer_address,
        )
        return report

    async def perform_sync_operation(self) -> Optional[SyncResult]:
        """Run one scheduled sync. Errors are recorded, never raised."""
        async with self._run_lock:
            try:
                return await self._execute_run(None)
            except NotRunningError as e:
                logger.warning("sync_run_skipped", reason=str(e))
            except Exception:
                # Recorded in stats and logged by _execute_run
                pass
        return None

    async def trigger_manual_sync(self, addresses: Optional[Sequence[str]] = None) -> SyncResult:
        """
        Run a sync out of band and return its result.

        Waits for an in-flight scheduled run to finish first.

        Raises:
            NotRunningError: supervisor not started
        """
        self._require_running()
        logger.info(
            "manual_sync_requested",
            mode="discovery" if addresses is None else "explicit",
            count=None if addresses is None else len(addresses),
        )
        async with self._run_lock:
            return await self._execute_run(addresses)

    async def reset_sync_state(self) -> None:
        """
        Forget synced/known addresses and the counters derived from them.

        Raises:
            NotRunningError: supervisor not started
        """
        self._require_running()
        async with self._run_lock:
            self.sync_state.reset()
            self._stats.reset_sync_counters()
        logger.info("sync_state_reset")

    def _require_running(self) -> None:
        if not self.is_running or self.engine is None:
            raise NotRunningError("Relayer service not initialized")

    async def _execute_run(self, addresses: Optional[Sequence[str]]) -> SyncResult:
        """Run the engine once and record the outcome; failures are re-raised."""
        engine = self.engine
        if engine is None:
            raise NotRunningError("Relayer service not initialized")

        started = time.monotonic()
        self._stats.total_runs += 1
        self._stats.last_run = datetime.now(timezone.utc)

        try:
            result = await engine.run(addresses)
        except Exception as e:
            duration_ms = int((time.monotonic() - started) * 1000)
            self._stats.record_failure(str(e), duration_ms)
            logger.error(
                "sync_run_failed",
                error=str(e),
                error_type=type(e).__name__,
                duration_ms=duration_ms,
            )
            raise

        duration_ms = int((time.monotonic() - started) * 1000)
        self._stats.record_success(result, duration_ms)
        logger.info(
            "sync_run_complete",
            synced=result.synced,
            skipped=result.skipped,
            errors=result.errors,
            duration_ms=duration_ms,
        )
        return result

    async def _run_schedule(self) -> None:
        interval = self.settings.sync_interval_seconds
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                await self.perform_sync_operation()

    def _on_schedule_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return

        # Fatal: the schedule died outside the per-run error handling
        self._state = SupervisorState.STOPPED
        logger.error("schedule_crashed", error=str(exc), error_type=type(exc).__name__)
        task.get_loop().call_exception_handler(
            {"message": "Relayer schedule crashed", "exception": exc, "task": task}
        )
