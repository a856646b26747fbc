"""
Read-only status reporting.

StatusReporter derives everything from the supervisor's public read
operations and keeps no state of its own.
"""

from datetime import datetime, timezone
from typing import Optional

import structlog

from .errors import RelayerError
from .models import (
    ChainInfo,
    RelayerStatistics,
    RelayerStats,
    SourceChainInfo,
    StatusSnapshot,
    SyncStateInfo,
    TargetChainInfo,
)
from .supervisor import RelayerSupervisor

logger = structlog.get_logger()


class StatusReporter:
    """Composes status snapshots for a supervisor."""

    def __init__(self, supervisor: RelayerSupervisor):
        self.supervisor = supervisor

    def status_label(self) -> str:
        """Lifecycle state, or "not-initialized" before the first successful start."""
        if self.supervisor.started_at is None and not self.supervisor.is_running:
            return "not-initialized"
        return self.supervisor.state.value

    def sync_state(self) -> SyncStateInfo:
        state = self.supervisor.sync_state
        return SyncStateInfo(
            synced_addresses=len(state.synced_addresses),
            known_addresses=len(state.known_addresses),
        )

    def statistics(self) -> RelayerStatistics:
        stats = RelayerStats.from_stats(self.supervisor.stats)
        uptime = 0.0
        if self.supervisor.is_running and self.supervisor.started_at is not None:
            uptime = (datetime.now(timezone.utc) - self.supervisor.started_at).total_seconds()
        return RelayerStatistics(
            **stats.model_dump(),
            is_running=self.supervisor.is_running,
            status=self.status_label(),
            uptime_seconds=uptime,
        )

    async def chain_info(self) -> Optional[ChainInfo]:
        """Chain ids, contract addresses and relayer balance; None before connecting."""
        registry = self.supervisor.registry
        flag_store = self.supervisor.flag_store
        if registry is None or flag_store is None:
            return None

        source = SourceChainInfo(chain_id=registry.chain_id, contract_address=registry.address)
        target = TargetChainInfo(chain_id=flag_store.chain_id, contract_address=flag_store.address)

        try:
            target.relayer_address = flag_store.signer_address()
            target.relayer_balance = str(await flag_store.native_balance())
        except RelayerError as e:
            logger.warning("status_chain_info_failed", error=str(e))
            return ChainInfo(source=source, target=target, error=str(e))

        return ChainInfo(source=source, target=target)

    async def snapshot(self) -> StatusSnapshot:
        return StatusSnapshot(
            is_running=self.supervisor.is_running,
            status=self.status_label(),
            stats=RelayerStats.from_stats(self.supervisor.stats),
            chain=await self.chain_info(),
            sync_state=self.sync_state(),
        )
