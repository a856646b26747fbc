"""
Cross-Chain Verification Relayer

Watches a proof-of-human registry on the source chain for completed
verifications and mirrors each verified address as a flag on the target
chain's flag store contract.

Usage:
    # Run the relayer with its HTTP control plane
    verification-relayer serve

    # Run a single sync and exit
    verification-relayer sync-once

    # Sync specific addresses once, bypassing discovery
    verification-relayer sync-once --address 0xabc... --address 0xdef...

    # Show one address's source record and target flag (no writes)
    verification-relayer check 0xabc...
"""

__version__ = "0.1.0"

from .config import Settings, get_settings, load_settings
from .contracts import (
    FlagWriteResult,
    ProofOfHumanRegistry,
    VerificationFlagStore,
    VerificationRecord,
    VerificationSink,
    VerificationSource,
)
from .errors import (
    ConfigError,
    GasError,
    NetworkError,
    NotRunningError,
    RelayerError,
    TransactionError,
)
from .supervisor import OperationalStats, RelayerSupervisor
from .sync import ReconciliationPolicy, SyncEngine, SyncResult, SyncState

__all__ = [
    "__version__",
    "Settings",
    "get_settings",
    "load_settings",
    "FlagWriteResult",
    "ProofOfHumanRegistry",
    "VerificationFlagStore",
    "VerificationRecord",
    "VerificationSink",
    "VerificationSource",
    "ConfigError",
    "GasError",
    "NetworkError",
    "NotRunningError",
    "RelayerError",
    "TransactionError",
    "OperationalStats",
    "RelayerSupervisor",
    "ReconciliationPolicy",
    "SyncEngine",
    "SyncResult",
    "SyncState",
]
