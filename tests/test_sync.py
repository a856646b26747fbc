"""
Tests for the reconciliation engine.
"""

import pytest

from verification_relayer.address import normalize_address
from verification_relayer.errors import NetworkError
from verification_relayer.sync import ReconciliationPolicy, SyncEngine, SyncState

from .conftest import ADDR_A, ADDR_B, ADDR_C, ADDR_MIXED, FakeFlagStore, FakeRegistry


class TestDiscoveryScenarios:
    """Fresh discovery, repeat run and reset."""

    @pytest.mark.asyncio
    async def test_fresh_discovery(self, registry, flag_store):
        """Two unseen addresses are both written."""
        engine = SyncEngine(registry, flag_store)

        result = await engine.run()

        assert result.to_dict() == {"synced": 2, "skipped": 0, "errors": 0}
        assert engine.state.synced_addresses == {ADDR_A, ADDR_B}
        assert flag_store.writes == [ADDR_A, ADDR_B]

    @pytest.mark.asyncio
    async def test_repeat_run_is_idempotent(self, registry, flag_store):
        """The second run skips both addresses and issues no writes."""
        engine = SyncEngine(registry, flag_store)
        await engine.run()

        result = await engine.run()

        assert result.to_dict() == {"synced": 0, "skipped": 2, "errors": 0}
        assert flag_store.writes == [ADDR_A, ADDR_B]

    @pytest.mark.asyncio
    async def test_reset_reprocesses(self, flag_store):
        """After a reset a previously synced address is written again."""
        engine = SyncEngine(FakeRegistry(discovered=[ADDR_A]), flag_store)
        await engine.run()
        engine.reset_state()

        result = await engine.run()

        assert result.synced == 1
        assert flag_store.writes == [ADDR_A, ADDR_A]

    @pytest.mark.asyncio
    async def test_nothing_discovered(self, flag_store):
        engine = SyncEngine(FakeRegistry(discovered=[]), flag_store)
        result = await engine.run()
        assert result.to_dict() == {"synced": 0, "skipped": 0, "errors": 0}
        assert flag_store.attempts == []

    @pytest.mark.asyncio
    async def test_discovery_failure_propagates(self, flag_store):
        """A failed discovery fails the whole run and writes nothing."""
        engine = SyncEngine(FakeRegistry(fail_discovery=True), flag_store)
        with pytest.raises(NetworkError):
            await engine.run()
        assert flag_store.attempts == []


class TestPartialFailure:
    @pytest.mark.asyncio
    async def test_one_failure_does_not_abort_run(self):
        """N addresses with write #k failing: N-1 synced, 1 error, N attempts."""
        addresses = [ADDR_A, ADDR_B, ADDR_C]
        flag_store = FakeFlagStore(fail_on={ADDR_B})
        engine = SyncEngine(FakeRegistry(discovered=addresses), flag_store)

        result = await engine.run()

        assert result.synced == 2
        assert result.errors == 1
        assert flag_store.attempts == addresses
        assert engine.state.synced_addresses == {ADDR_A, ADDR_C}

    @pytest.mark.asyncio
    async def test_failed_address_retried_next_run(self):
        flag_store = FakeFlagStore(fail_on={ADDR_B})
        engine = SyncEngine(FakeRegistry(discovered=[ADDR_A, ADDR_B]), flag_store)
        await engine.run()

        flag_store.fail_on.clear()
        result = await engine.run()

        assert result.to_dict() == {"synced": 1, "skipped": 1, "errors": 0}
        assert flag_store.writes[-1] == ADDR_B


class TestNormalization:
    @pytest.mark.asyncio
    async def test_case_variants_are_one_entry(self, flag_store):
        """Lower and upper case forms of one address count once in known/synced."""
        lower = ADDR_MIXED.lower()
        upper = "0x" + ADDR_MIXED[2:].upper()
        engine = SyncEngine(FakeRegistry(discovered=[lower, upper]), flag_store)

        result = await engine.run()

        assert len(engine.state.known_addresses) == 1
        assert engine.state.synced_addresses == {normalize_address(ADDR_MIXED)}
        assert result.synced == 1
        assert result.skipped == 1
        assert len(flag_store.attempts) == 1

    @pytest.mark.asyncio
    async def test_manual_variant_of_synced_address_skipped(self, flag_store):
        engine = SyncEngine(FakeRegistry(discovered=[ADDR_MIXED.lower()]), flag_store)
        await engine.run()

        result = await engine.run(["0x" + ADDR_MIXED[2:].upper()])

        assert result.to_dict() == {"synced": 0, "skipped": 1, "errors": 0}


class TestManualMode:
    @pytest.mark.asyncio
    async def test_explicit_addresses_bypass_discovery(self, registry, flag_store):
        engine = SyncEngine(registry, flag_store)

        result = await engine.run([ADDR_C])

        assert result.synced == 1
        assert registry.discovery_calls == 0
        assert ADDR_C in engine.state.synced_addresses

    @pytest.mark.asyncio
    async def test_malformed_addresses_counted_as_errors(self, registry, flag_store):
        engine = SyncEngine(registry, flag_store)

        result = await engine.run(["0x1234", ADDR_A, "hello"])

        assert result.to_dict() == {"synced": 1, "skipped": 0, "errors": 2}
        assert flag_store.attempts == [ADDR_A]

    @pytest.mark.asyncio
    async def test_empty_list_is_noop(self, registry, flag_store):
        engine = SyncEngine(registry, flag_store)
        result = await engine.run([])
        assert result.to_dict() == {"synced": 0, "skipped": 0, "errors": 0}
        assert registry.discovery_calls == 0


class TestReverifyPolicy:
    """Stricter policy: re-read source record and target flag before writing."""

    @pytest.mark.asyncio
    async def test_trust_discovery_skips_reads(self, registry, flag_store):
        engine = SyncEngine(registry, flag_store)
        await engine.run()
        assert registry.reads == []

    @pytest.mark.asyncio
    async def test_unverified_address_not_written(self, flag_store):
        registry = FakeRegistry(discovered=[ADDR_A, ADDR_B], verified={ADDR_A})
        engine = SyncEngine(registry, flag_store, policy=ReconciliationPolicy.REVERIFY_SOURCE)

        result = await engine.run()

        assert result.to_dict() == {"synced": 1, "skipped": 1, "errors": 0}
        assert flag_store.attempts == [ADDR_A]

    @pytest.mark.asyncio
    async def test_already_flagged_marked_synced_without_write(self):
        registry = FakeRegistry(discovered=[ADDR_A], verified={ADDR_A})
        flag_store = FakeFlagStore(flags={ADDR_A: True})
        engine = SyncEngine(registry, flag_store, policy=ReconciliationPolicy.REVERIFY_SOURCE)

        result = await engine.run()

        assert result.to_dict() == {"synced": 0, "skipped": 1, "errors": 0}
        assert flag_store.attempts == []
        assert ADDR_A in engine.state.synced_addresses

    @pytest.mark.asyncio
    async def test_read_failure_fails_closed(self, flag_store):
        """An unreadable source record is an error, never a write."""
        registry = FakeRegistry(discovered=[ADDR_A, ADDR_B], verified={ADDR_A, ADDR_B}, fail_reads={ADDR_A})
        engine = SyncEngine(registry, flag_store, policy=ReconciliationPolicy.REVERIFY_SOURCE)

        result = await engine.run()

        assert result.to_dict() == {"synced": 1, "skipped": 0, "errors": 1}
        assert flag_store.attempts == [ADDR_B]


class TestSharedState:
    @pytest.mark.asyncio
    async def test_state_shared_between_engines(self, registry):
        state = SyncState()
        await SyncEngine(registry, FakeFlagStore(), state=state).run()

        second_store = FakeFlagStore()
        result = await SyncEngine(registry, second_store, state=state).run()

        assert result.skipped == 2
        assert second_store.attempts == []
