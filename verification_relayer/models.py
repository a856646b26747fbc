"""
Pydantic models for status snapshots and the HTTP control plane.

Field names are snake_case in Python and serialized as camelCase.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .supervisor import OperationalStats
from .sync import SyncResult


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Status snapshot
# ============================================================================

class RelayerStats(CamelModel):
    """Cumulative run counters."""

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

    @classmethod
    def from_stats(cls, stats: OperationalStats) -> "RelayerStats":
        return cls(
            total_runs=stats.total_runs,
            successful_runs=stats.successful_runs,
            failed_runs=stats.failed_runs,
            verified_users_updated=stats.verified_users_updated,
            addresses_synced=stats.addresses_synced,
            addresses_skipped=stats.addresses_skipped,
            errors=stats.errors,
            last_run=stats.last_run,
            last_error=stats.last_error,
            last_duration_ms=stats.last_duration_ms,
        )


class SourceChainInfo(CamelModel):
    chain_id: int
    contract_address: str


class TargetChainInfo(CamelModel):
    chain_id: int
    contract_address: str
    relayer_address: Optional[str] = None
    relayer_balance: Optional[str] = Field(None, description="Native balance in ether")


class ChainInfo(CamelModel):
    source: SourceChainInfo
    target: TargetChainInfo
    error: Optional[str] = Field(None, description="Set when live chain data could not be read")


class SyncStateInfo(CamelModel):
    synced_addresses: int = 0
    known_addresses: int = 0


class StatusSnapshot(CamelModel):
    """Composite read-only view of the relayer."""

    is_running: bool
    status: str
    stats: RelayerStats
    chain: Optional[ChainInfo] = None
    sync_state: SyncStateInfo


class RelayerStatistics(RelayerStats):
    is_running: bool = False
    status: str = "not-initialized"
    uptime_seconds: float = 0.0


# ============================================================================
# HTTP responses
# ============================================================================

class StatusResponse(StatusSnapshot):
    service: str
    timestamp: datetime


class StatsResponse(CamelModel):
    service: str
    timestamp: datetime
    statistics: RelayerStatistics


class MemoryInfo(CamelModel):
    max_rss_bytes: int


class HealthResponse(CamelModel):
    service: str
    timestamp: datetime
    uptime: float = Field(..., description="Process uptime in seconds")
    memory: MemoryInfo
    relayer: StatusSnapshot


class SyncResultModel(CamelModel):
    synced: int
    skipped: int
    errors: int

    @classmethod
    def from_result(cls, result: SyncResult) -> "SyncResultModel":
        return cls(**result.to_dict())


class SyncResponse(CamelModel):
    message: str
    result: SyncResultModel
    timestamp: datetime


class ResetSyncResponse(CamelModel):
    message: str
    timestamp: datetime


class ErrorResponse(CamelModel):
    error: str
    message: str
    status: Optional[str] = None
    timestamp: datetime


# ============================================================================
# HTTP requests
# ============================================================================

class SyncAddressesRequest(BaseModel):
    """Request to sync an explicit list of addresses."""

    addresses: Optional[list[str]] = Field(None, description="EVM addresses (0x...)")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"addresses": ["0x1234567890abcdef1234567890abcdef12345678"]}
            ]
        }
    }
