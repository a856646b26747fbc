"""
Typed access to the two relayer contracts.

- VerificationSource: read-only proof-of-human registry on the source chain
- VerificationSink: verification flag store on the target chain, written by
  the relayer's signing key

Each role has one web3-backed implementation (ProofOfHumanRegistry,
VerificationFlagStore). Tests substitute in-memory implementations of the
same abstract classes.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional, Sequence

import structlog
from web3 import Web3
from web3.exceptions import ContractLogicError

from .address import InvalidAddressError, is_zero_address, normalize_address
from .chain import RPC_ERRORS, ChainClient, apply_headroom
from .errors import GasError, NetworkError, TransactionError

logger = structlog.get_logger()


# ProofOfHumanOApp ABI (minimal: verifiedHumans getter + VerificationCompleted)
SOURCE_REGISTRY_ABI = [
    {
        "inputs": [{"name": "", "type": "address"}],
        "name": "verifiedHumans",
        "outputs": [
            {"name": "userAddress", "type": "address"},
            {"name": "timestamp", "type": "uint256"},
            {"name": "gender", "type": "string"},
            {"name": "nationality", "type": "string"},
            {"name": "minimumAge", "type": "uint256"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "userAddress", "type": "address"},
            {"indexed": False, "name": "timestamp", "type": "uint256"},
        ],
        "name": "VerificationCompleted",
        "type": "event",
    },
]

# CentralWallet ABI (minimal: single-address flag read/write)
FLAG_STORE_ABI = [
    {
        "inputs": [
            {"name": "user", "type": "address"},
            {"name": "isVerified", "type": "bool"},
        ],
        "name": "setVerifiedHuman",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [{"name": "user", "type": "address"}],
        "name": "isHumanVerified",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "view",
        "type": "function",
    },
]


@dataclass(frozen=True)
class VerificationRecord:
    """Proof-of-human record as stored on the source chain."""

    address: str
    timestamp: int  # Unix seconds when verification completed
    gender: str = ""
    nationality: str = ""
    minimum_age: int = 0

    @classmethod
    def from_call(cls, raw: Sequence[Any]) -> "VerificationRecord":
        """Build from the verifiedHumans() return tuple."""
        user_address, timestamp, gender, nationality, minimum_age = raw
        return cls(
            address=user_address,
            timestamp=int(timestamp),
            gender=gender or "",
            nationality=nationality or "",
            minimum_age=int(minimum_age),
        )

    @property
    def is_present(self) -> bool:
        """A record exists iff its embedded address is non-zero."""
        return not is_zero_address(self.address)

    def disclosed_attributes(self) -> list[str]:
        """Names of the optional attributes the user chose to disclose."""
        disclosed = []
        if self.gender:
            disclosed.append("gender")
        if self.nationality:
            disclosed.append("nationality")
        if self.minimum_age:
            disclosed.append("minimum_age")
        return disclosed


@dataclass
class FlagUpdate:
    """One requested flag write."""

    address: str
    value: bool = True


@dataclass
class FlagWriteResult:
    """Result of writing one verification flag."""

    address: str
    success: bool
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    error: Optional[str] = None


class ChainContract(ABC):
    """A fixed contract on one chain."""

    name: str = "contract"

    @property
    @abstractmethod
    def chain_id(self) -> int:
        """Chain id the contract lives on."""

    @property
    @abstractmethod
    def address(self) -> str:
        """Contract address (checksum form)."""

    @abstractmethod
    async def current_block_height(self) -> int:
        """Latest block number of the contract's chain."""

    async def health_check(self) -> int:
        """Check the chain is reachable; returns the current block height."""
        return await self.current_block_height()

    async def close(self) -> None:
        """Release the underlying connection. No-op unless overridden."""


class VerificationSource(ChainContract):
    """Read-only registry of completed human verifications."""

    name = "source"

    @abstractmethod
    async def read_verification_record(self, address: str) -> Optional[VerificationRecord]:
        """
        Look up one address.

        Returns None when no record exists. Raises NetworkError when the read
        cannot complete, so callers can fail closed.
        """

    @abstractmethod
    async def discover_recently_verified(self, window_blocks: int) -> list[str]:
        """Normalized, deduplicated addresses verified within the trailing window."""


class VerificationSink(ChainContract):
    """Mutable per-address verification flags."""

    name = "target"

    @abstractmethod
    async def read_verification_flag(self, address: str) -> bool:
        """Current on-chain flag. Raises NetworkError when the read fails."""

    @abstractmethod
    async def write_verification_flag(self, address: str, value: bool) -> FlagWriteResult:
        """
        Submit one flag write and wait for it to be mined.

        Raises:
            TransactionError: reverted, or not mined in time
            GasError: estimation or fee lookup failed
            NetworkError: submission failed
        """

    @abstractmethod
    def signer_address(self) -> str:
        """Address of the relayer's signing key."""

    @abstractmethod
    async def native_balance(self, address: Optional[str] = None) -> Decimal:
        """Native balance in ether (defaults to the signer)."""

    async def write_verification_flags_batch(
        self, entries: Sequence[FlagUpdate]
    ) -> list[FlagWriteResult]:
        """
        Write flags one transaction per entry, strictly in order.

        A failing entry is reported on its own result and does not stop the
        remaining entries.
        """
        if not entries:
            logger.info("flag_batch_empty")
            return []

        logger.info("flag_batch_started", count=len(entries))
        results: list[FlagWriteResult] = []

        for entry in entries:
            try:
                result = await self.write_verification_flag(entry.address, entry.value)
            except Exception as e:
                logger.error(
                    "flag_write_failed",
                    address=entry.address,
                    error=str(e),
                    error_type=type(e).__name__,
                    tx_hash=getattr(e, "tx_hash", None),
                )
                result = FlagWriteResult(
                    address=entry.address,
                    success=False,
                    tx_hash=getattr(e, "tx_hash", None),
                    error=str(e),
                )
            results.append(result)

        logger.info(
            "flag_batch_complete",
            count=len(entries),
            succeeded=sum(1 for r in results if r.success),
        )
        return results


class ProofOfHumanRegistry(VerificationSource):
    """web3-backed source registry."""

    def __init__(self, client: ChainClient, address: str, log_chunk_blocks: int = 2000):
        self.client = client
        self._address = normalize_address(address)
        self.log_chunk_blocks = log_chunk_blocks
        self._contract = client.contract(self._address, SOURCE_REGISTRY_ABI)

    @property
    def chain_id(self) -> int:
        return self.client.chain_id

    @property
    def address(self) -> str:
        return self._address

    async def current_block_height(self) -> int:
        return await self.client.current_block_height()

    async def close(self) -> None:
        await self.client.close()

    async def read_verification_record(self, address: str) -> Optional[VerificationRecord]:
        checksum = normalize_address(address)
        try:
            raw = await self._contract.functions.verifiedHumans(checksum).call()
        except RPC_ERRORS as e:
            raise NetworkError(f"source: failed to read verification of {checksum}: {e}") from e

        record = VerificationRecord.from_call(raw)
        if not record.is_present:
            logger.debug("source_record_absent", address=checksum)
            return None

        logger.debug(
            "source_record_found",
            address=checksum,
            timestamp=record.timestamp,
            disclosed=record.disclosed_attributes(),
        )
        return record

    async def discover_recently_verified(self, window_blocks: int) -> list[str]:
        head = await self.client.current_block_height()
        from_block = max(0, head - window_blocks)

        # dict keeps first-seen (log) order
        discovered: dict[str, None] = {}
        start = from_block
        while start <= head:
            end = min(start + self.log_chunk_blocks - 1, head)
            try:
                logs = await self._contract.events.VerificationCompleted.get_logs(
                    from_block=start, to_block=end
                )
            except RPC_ERRORS as e:
                raise NetworkError(
                    f"source: failed to fetch VerificationCompleted logs {start}-{end}: {e}"
                ) from e

            for log in logs:
                raw_address = log["args"].get("userAddress")
                try:
                    discovered.setdefault(normalize_address(raw_address), None)
                except InvalidAddressError:
                    logger.warning(
                        "discovery_event_malformed",
                        block_number=log.get("blockNumber"),
                        user_address=raw_address,
                    )
            start = end + 1

        logger.info(
            "addresses_discovered",
            from_block=from_block,
            to_block=head,
            count=len(discovered),
        )
        return list(discovered)


class VerificationFlagStore(VerificationSink):
    """web3-backed target flag store."""

    def __init__(
        self,
        client: ChainClient,
        address: str,
        gas_limit: int = 100_000,
        gas_headroom_percent: int = 20,
    ):
        self.client = client
        self._address = normalize_address(address)
        self.gas_limit = gas_limit
        self.gas_headroom_percent = gas_headroom_percent
        self._contract = client.contract(self._address, FLAG_STORE_ABI)

    @property
    def chain_id(self) -> int:
        return self.client.chain_id

    @property
    def address(self) -> str:
        return self._address

    async def current_block_height(self) -> int:
        return await self.client.current_block_height()

    async def close(self) -> None:
        await self.client.close()

    def signer_address(self) -> str:
        return self.client.signer_address()

    async def native_balance(self, address: Optional[str] = None) -> Decimal:
        return await self.client.native_balance(address or self.signer_address())

    async def read_verification_flag(self, address: str) -> bool:
        checksum = normalize_address(address)
        try:
            return bool(await self._contract.functions.isHumanVerified(checksum).call())
        except RPC_ERRORS as e:
            raise NetworkError(f"target: failed to read flag of {checksum}: {e}") from e

    async def estimate_gas_limit(self, fn: Any, sender: str) -> int:
        """Estimate gas for a call, with headroom, never below the configured limit."""
        try:
            estimated = await fn.estimate_gas({"from": sender})
        except ContractLogicError as e:
            raise TransactionError(f"Transaction would revert: {e}") from e
        except RPC_ERRORS as e:
            raise GasError(f"target: gas estimation failed: {e}") from e
        return max(self.gas_limit, apply_headroom(estimated, self.gas_headroom_percent))

    async def write_verification_flag(self, address: str, value: bool) -> FlagWriteResult:
        checksum = normalize_address(address)
        sender = self.signer_address()
        fn = self._contract.functions.setVerifiedHuman(checksum, value)

        gas = await self.estimate_gas_limit(fn, sender)
        fees = await self.client.suggest_fees()

        try:
            tx = await fn.build_transaction({"from": sender, "gas": gas, **fees})
        except RPC_ERRORS as e:
            raise NetworkError(f"target: failed to build transaction for {checksum}: {e}") from e

        logger.info("flag_write_submitting", address=checksum, value=value, gas=gas, **fees)
        receipt = await self.client.send_transaction(tx)

        return FlagWriteResult(
            address=checksum,
            success=True,
            tx_hash=Web3.to_hex(receipt["transactionHash"]),
            block_number=receipt["blockNumber"],
            gas_used=receipt["gasUsed"],
        )
