"""
Shared fixtures: in-memory source registry and flag store, and test settings.
"""

from decimal import Decimal
from typing import Optional

import pytest

from verification_relayer.address import normalize_address
from verification_relayer.config import Settings
from verification_relayer.contracts import (
    FlagWriteResult,
    VerificationRecord,
    VerificationSink,
    VerificationSource,
)
from verification_relayer.errors import ConfigError, NetworkError, TransactionError

ADDR_A = "0x1111111111111111111111111111111111111111"
ADDR_B = "0x2222222222222222222222222222222222222222"
ADDR_C = "0x3333333333333333333333333333333333333333"
ADDR_MIXED = "0xabcdefabcdefabcdefabcdefabcdefabcdefabcd"

SOURCE_CONTRACT = "0x4444444444444444444444444444444444444444"
TARGET_CONTRACT = "0x5555555555555555555555555555555555555555"
SIGNER = "0x6666666666666666666666666666666666666666"
TEST_PRIVATE_KEY = "0x" + "11" * 32


class FakeRegistry(VerificationSource):
    """In-memory proof-of-human registry."""

    def __init__(
        self,
        discovered: Optional[list[str]] = None,
        verified: Optional[set[str]] = None,
        fail_discovery: bool = False,
        fail_reads: Optional[set[str]] = None,
        reachable: bool = True,
    ):
        self.discovered = list(discovered or [])
        self.verified = {normalize_address(a) for a in (verified or set())}
        self.fail_discovery = fail_discovery
        self.fail_reads = {normalize_address(a) for a in (fail_reads or set())}
        self.reachable = reachable
        self.discovery_calls = 0
        self.reads: list[str] = []
        self.closed = False

    @property
    def chain_id(self) -> int:
        return 42220

    @property
    def address(self) -> str:
        return SOURCE_CONTRACT

    async def current_block_height(self) -> int:
        if not self.reachable:
            raise NetworkError("source RPC unreachable")
        return 1000

    async def read_verification_record(self, address: str) -> Optional[VerificationRecord]:
        checksum = normalize_address(address)
        self.reads.append(checksum)
        if checksum in self.fail_reads:
            raise NetworkError(f"source: failed to read verification of {checksum}")
        if checksum not in self.verified:
            return None
        return VerificationRecord(address=checksum, timestamp=1_700_000_000)

    async def discover_recently_verified(self, window_blocks: int) -> list[str]:
        self.discovery_calls += 1
        if self.fail_discovery:
            raise NetworkError("source: failed to fetch logs")
        return list(self.discovered)

    async def close(self) -> None:
        self.closed = True


class FakeFlagStore(VerificationSink):
    """In-memory verification flag store."""

    def __init__(
        self,
        fail_on: Optional[set[str]] = None,
        flags: Optional[dict[str, bool]] = None,
        signer: Optional[str] = SIGNER,
        reachable: bool = True,
    ):
        self.fail_on = {normalize_address(a) for a in (fail_on or set())}
        self.flags = {normalize_address(k): v for k, v in (flags or {}).items()}
        self.signer = signer
        self.reachable = reachable
        self.attempts: list[str] = []
        self.closed = False

    @property
    def chain_id(self) -> int:
        return 11155111

    @property
    def address(self) -> str:
        return TARGET_CONTRACT

    @property
    def writes(self) -> list[str]:
        """Addresses whose write succeeded, in order."""
        return [a for a in self.attempts if a not in self.fail_on]

    async def current_block_height(self) -> int:
        if not self.reachable:
            raise NetworkError("target RPC unreachable")
        return 5000

    def signer_address(self) -> str:
        if self.signer is None:
            raise ConfigError("target: no signing key configured")
        return self.signer

    async def native_balance(self, address: Optional[str] = None) -> Decimal:
        if not self.reachable:
            raise NetworkError("target RPC unreachable")
        return Decimal("1.5")

    async def close(self) -> None:
        self.closed = True

    async def read_verification_flag(self, address: str) -> bool:
        return self.flags.get(normalize_address(address), False)

    async def write_verification_flag(self, address: str, value: bool) -> FlagWriteResult:
        checksum = normalize_address(address)
        self.attempts.append(checksum)
        if checksum in self.fail_on:
            raise TransactionError("Transaction reverted", tx_hash="0x" + "de" * 32)
        self.flags[checksum] = value
        return FlagWriteResult(
            address=checksum,
            success=True,
            tx_hash="0x" + f"{len(self.attempts):064x}",
            block_number=5000 + len(self.attempts),
            gas_used=46_000,
        )


@pytest.fixture
def settings() -> Settings:
    """Complete relayer settings with a long interval so only the initial run fires."""
    return Settings(
        _env_file=None,
        source_contract=SOURCE_CONTRACT,
        target_contract=TARGET_CONTRACT,
        relayer_private_key=TEST_PRIVATE_KEY,
        sync_interval_ms=3_600_000,
        api_token=None,
    )


@pytest.fixture
def registry() -> FakeRegistry:
    return FakeRegistry(discovered=[ADDR_A, ADDR_B])


@pytest.fixture
def flag_store() -> FakeFlagStore:
    return FakeFlagStore()
