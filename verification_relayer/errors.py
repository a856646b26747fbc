"""
Error taxonomy for the verification relayer.

Startup failures (ConfigError, NetworkError) keep the supervisor out of the
running state. Per-address failures (TransactionError, GasError) are contained
inside a single sync run.
"""

from typing import Optional


class RelayerError(Exception):
    """Base class for all relayer errors."""


class ConfigError(RelayerError):
    """Missing or malformed configuration."""


class NetworkError(RelayerError):
    """RPC endpoint unreachable, timed out, or on the wrong chain."""


class TransactionError(RelayerError):
    """Transaction reverted or was not mined in time."""

    def __init__(self, message: str, tx_hash: Optional[str] = None):
        self.tx_hash = tx_hash
        super().__init__(message)


class GasError(RelayerError):
    """Gas estimation or fee suggestion failed."""


class NotRunningError(RelayerError):
    """Control operation called before the supervisor finished starting."""
