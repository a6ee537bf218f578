import sys
import asyncio
from pathlib import Path
PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import pytest

from backend.pama.index import CodeSearchIndex
from backend.pama.models import Coding, SelectOption
from backend.pama.search_service import Debouncer, SearchService


def _big_index(n=120):
    return CodeSearchIndex.build([
        Coding(code=str(1000 + i), display=f"Computed tomography of region {i} (procedure)")
        for i in range(n)
    ])


class _SpyIndex:
    """Duck-typed index that records which queries reached it."""

    def __init__(self, index):
        self.index = index
        self.queries = []

    def search(self, query):
        self.queries.append(query)
        return self.index.search(query)


@pytest.fixture
def small_index():
    return CodeSearchIndex.build([
        Coding(code="45036003", display="Ultrasonography of abdomen (procedure)"),
        Coding(code="419394008", display="Computed tomography of abdomen and pelvis (procedure)"),
        Coding(code="71651007", display="Mammography (procedure)"),
    ])


def test_result_cap_is_fifty():
    index = _big_index()
    assert len(index.search("CT")) == 120

    svc = SearchService(wait=0.01)
    options = asyncio.run(svc.search("CT", index))
    assert len(options) == 50
    assert [o.value for o in options] == [c.code for c in index.search("CT")[:50]]


def test_options_wrap_codings(small_index):
    svc = SearchService(wait=0.01)
    options = asyncio.run(svc.search("mammography", small_index))
    assert options == [
        SelectOption(
            label="Mammography (procedure)",
            value="71651007",
            data=Coding(code="71651007", display="Mammography (procedure)"),
        )
    ]


def test_no_match_resolves_empty(small_index):
    svc = SearchService(wait=0.01)
    assert asyncio.run(svc.search("zzzz", small_index)) == []
    assert asyncio.run(svc.search("   ", small_index)) == []


def test_rapid_calls_collapse_to_latest(small_index):
    spy = _SpyIndex(small_index)
    svc = SearchService(wait=0.05)

    async def typing():
        return await asyncio.gather(svc.search("a", spy), svc.search("ab", spy))

    first, second = asyncio.run(typing())
    assert spy.queries == ["ab"]
    expected = [SelectOption.from_coding(c) for c in small_index.search("ab")]
    assert second == expected
    # the superseded call sees the latest result, never one computed for "a"
    assert first == expected


def test_calls_outside_window_each_run():
    spy = _SpyIndex(_big_index(5))
    svc = SearchService(wait=0.01)

    async def typing():
        a = await svc.search("region", spy)
        b = await svc.search("1003", spy)
        return a, b

    a, b = asyncio.run(typing())
    assert spy.queries == ["region", "1003"]
    assert len(a) == 5
    assert [o.value for o in b] == ["1003"]


def test_cancelled_caller_is_dropped():
    calls = []
    debounced = Debouncer(lambda q: calls.append(q) or q.upper(), wait=0.02)

    async def run():
        task = asyncio.ensure_future(debounced("a"))
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.sleep(0.05)
        return await debounced("b")

    assert asyncio.run(run()) == "B"
    assert calls == ["b"]
    assert debounced.pending == 0


def test_errors_reach_every_waiter():
    def boom(q):
        raise RuntimeError("index unavailable")

    debounced = Debouncer(boom, wait=0.01)

    async def run():
        return await asyncio.gather(debounced("a"), debounced("b"), return_exceptions=True)

    results = asyncio.run(run())
    assert all(isinstance(r, RuntimeError) for r in results)


def test_different_indexes_never_share_results(small_index):
    reasons = CodeSearchIndex.build([
        Coding(code="29857009", display="Chest pain (finding)"),
        Coding(code="21522001", display="Abdominal pain (finding)"),
    ])
    procedures_spy, reasons_spy = _SpyIndex(small_index), _SpyIndex(reasons)
    svc = SearchService(wait=0.05)

    async def typing():
        return await asyncio.gather(svc.search("mammo", procedures_spy), svc.search("chest pain", reasons_spy))

    procedures_out, reasons_out = asyncio.run(typing())
    assert [o.value for o in procedures_out] == ["71651007"]
    assert [o.value for o in reasons_out] == ["29857009", "21522001"]
    assert procedures_spy.queries == ["mammo"]
    assert reasons_spy.queries == ["chest pain"]


def test_sessions_are_debounced_separately(small_index):
    spy = _SpyIndex(small_index)
    svc = SearchService(wait=0.05)

    async def typing():
        return await asyncio.gather(
            svc.search("a", spy, session="alice"),
            svc.search("mammo", spy, session="bob"),
            svc.search("ab", spy, session="alice"),
        )

    alice_first, bob, alice_last = asyncio.run(typing())
    assert sorted(spy.queries) == ["ab", "mammo"]
    assert [o.value for o in bob] == ["71651007"]
    assert alice_first == alice_last
    assert {o.value for o in alice_last} == {"45036003", "419394008"}
    # finished sessions leave nothing behind
    assert svc.active_sessions == 0
