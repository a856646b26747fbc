"""
Cross-chain reconciliation: discover verified addresses on the source chain
and set their verification flag on the target chain.

One run moves through DISCOVER -> FILTER -> DECIDE -> APPLY -> REPORT.
A failure on one address is counted and never aborts the rest of the run.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Sequence

import structlog

from .address import InvalidAddressError, normalize_address
from .contracts import FlagUpdate, VerificationSink, VerificationSource

logger = structlog.get_logger()

DEFAULT_WINDOW_BLOCKS = 2000


class ReconciliationPolicy(str, Enum):
    """How the engine decides whether a candidate address gets written."""

    # Every discovered or operator-supplied address is written, without
    # re-reading the source record or the current target flag.
    TRUST_DISCOVERY = "trust-discovery"
    # Re-read the source record and the target flag before writing.
    REVERIFY_SOURCE = "reverify-source"


class Decision(Enum):
    WRITE = "write"
    NOT_VERIFIED = "not_verified"
    ALREADY_SET = "already_set"


@dataclass
class SyncState:
    """Process-local working set; never persisted."""

    # Addresses written successfully during this process lifetime
    synced_addresses: set[str] = field(default_factory=set)
    # Every address ever discovered or supplied
    known_addresses: set[str] = field(default_factory=set)

    def reset(self) -> None:
        self.synced_addresses.clear()
        self.known_addresses.clear()


@dataclass
class SyncResult:
    """Outcome of one sync run."""

    synced: int = 0
    skipped: int = 0
    errors: int = 0
    addresses: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, int]:
        return {"synced": self.synced, "skipped": self.skipped, "errors": self.errors}


class SyncEngine:
    """
    Reconciles verification flags from the source registry into the target
    flag store.

    Not safe for concurrent run() calls on the same state; the supervisor
    serializes runs.
    """

    def __init__(
        self,
        source: VerificationSource,
        sink: VerificationSink,
        state: Optional[SyncState] = None,
        policy: ReconciliationPolicy = ReconciliationPolicy.TRUST_DISCOVERY,
        window_blocks: int = DEFAULT_WINDOW_BLOCKS,
    ):
        self.source = source
        self.sink = sink
        self.state = state if state is not None else SyncState()
        self.policy = policy
        self.window_blocks = window_blocks

    async def run(self, addresses: Optional[Sequence[str]] = None) -> SyncResult:
        """
        Run one reconciliation pass.

        Args:
            addresses: explicit addresses to sync (manual mode). When None,
                addresses are discovered from recent source-chain events.

        Raises:
            NetworkError: discovery failed; nothing was written
        """
        result = SyncResult()
        manual = addresses is not None

        logger.info("sync_started", mode="manual" if manual else "discovery", policy=self.policy.value)

        # DISCOVER
        if manual:
            raw = list(addresses)
        else:
            raw = await self.source.discover_recently_verified(self.window_blocks)
        candidates = self._normalize_candidates(raw, result)
        self.state.known_addresses.update(candidates)

        if not candidates:
            logger.info("sync_nothing_to_do", errors=result.errors)
            return result

        # FILTER + DECIDE
        eligible: list[str] = []
        seen_this_run: set[str] = set()
        for address in candidates:
            if address in self.state.synced_addresses or address in seen_this_run:
                logger.info("address_skipped", address=address, reason="already_synced")
                result.skipped += 1
                continue
            seen_this_run.add(address)

            try:
                decision = await self._decide(address)
            except Exception as e:
                logger.error("address_decision_failed", address=address, error=str(e))
                result.errors += 1
                continue

            if decision is Decision.WRITE:
                eligible.append(address)
            elif decision is Decision.ALREADY_SET:
                self.state.synced_addresses.add(address)
                logger.info("address_skipped", address=address, reason="already_set_on_target")
                result.skipped += 1
            else:
                logger.info("address_skipped", address=address, reason="not_verified_on_source")
                result.skipped += 1

        # APPLY
        if eligible:
            updates = [FlagUpdate(address=address, value=True) for address in eligible]
            for write in await self.sink.write_verification_flags_batch(updates):
                if write.success:
                    self.state.synced_addresses.add(write.address)
                    result.synced += 1
                    result.addresses.append(write.address)
                else:
                    result.errors += 1

        # REPORT
        logger.info(
            "sync_complete",
            synced=result.synced,
            skipped=result.skipped,
            errors=result.errors,
            known=len(self.state.known_addresses),
        )
        return result

    def reset_state(self) -> None:
        """Forget every synced and known address."""
        self.state.reset()
        logger.info("sync_state_reset")

    def _normalize_candidates(self, addresses: Sequence[str], result: SyncResult) -> list[str]:
        """Normalize candidate addresses, counting malformed ones as errors."""
        candidates: list[str] = []
        for raw in addresses:
            try:
                candidates.append(normalize_address(raw))
            except InvalidAddressError as e:
                logger.error("address_invalid", address=raw, error=str(e))
                result.errors += 1
        return candidates

    async def _decide(self, address: str) -> Decision:
        if self.policy is ReconciliationPolicy.TRUST_DISCOVERY:
            return Decision.WRITE

        # REVERIFY_SOURCE: read failures raise and are counted by the caller,
        # so an unreadable address is never marked.
        record = await self.source.read_verification_record(address)
        if record is None:
            return Decision.NOT_VERIFIED
        if await self.sink.read_verification_flag(address):
            return Decision.ALREADY_SET
        return Decision.WRITE
