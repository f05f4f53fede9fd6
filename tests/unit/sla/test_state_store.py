"""Unit tests for InMemoryEscalationStateStore."""

import asyncio

from src.config import SLAState
from src.sla.infrastructure import InMemoryEscalationStateStore


class TestCompareAndSet:

    async def test_first_write_expects_none(self) -> None:
        store = InMemoryEscalationStateStore()

        assert await store.compare_and_set("t1", "tenant", None, SLAState.WARNING) is True
        assert await store.get("t1") == SLAState.WARNING

    async def test_stale_expectation_fails(self) -> None:
        store = InMemoryEscalationStateStore()
        await store.compare_and_set("t1", "tenant", None, SLAState.WARNING)

        assert await store.compare_and_set("t1", "tenant", None, SLAState.BREACHED) is False
        assert await store.compare_and_set("t1", "tenant", SLAState.WARNING, SLAState.BREACHED) is True
        assert await store.get("t1") == SLAState.BREACHED

    async def test_concurrent_claims_have_one_winner(self) -> None:
        store = InMemoryEscalationStateStore()

        results = await asyncio.gather(*(
            store.compare_and_set("t1", "tenant", None, SLAState.BREACHED) for _ in range(10)
        ))

        assert results.count(True) == 1


class TestPrune:

    async def test_prune_keeps_listed_threads(self) -> None:
        store = InMemoryEscalationStateStore()
        for thread_id in ("a", "b", "c"):
            await store.compare_and_set(thread_id, "tenant-1", None, SLAState.WARNING)
        await store.compare_and_set("x", "tenant-2", None, SLAState.WARNING)

        removed = await store.prune("tenant-1", {"b"})

        assert removed == 2
        assert await store.get("a") is None
        assert await store.get("b") == SLAState.WARNING
        assert await store.get("x") == SLAState.WARNING

    async def test_discard_and_tenant_ids(self) -> None:
        store = InMemoryEscalationStateStore()
        await store.compare_and_set("a", "tenant-1", None, SLAState.WARNING)
        await store.compare_and_set("b", "tenant-2", None, SLAState.WARNING)

        await store.discard("a")
        await store.discard("unknown")

        assert await store.tenant_ids() == ["tenant-2"]
