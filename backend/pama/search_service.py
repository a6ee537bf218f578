import asyncio
import logging
import time
from typing import Any, Callable, Dict, Hashable, List, Optional, Tuple

from .index import CodeSearchIndex
from .models import SelectOption

logger = logging.getLogger(__name__)

DEFAULT_RESULT_LIMIT = 50
DEFAULT_DEBOUNCE_SECONDS = 0.2


class Debouncer:
    """
    Coalesces rapid calls into one delayed call with the latest arguments.

    Every call restarts the timer. When the timer fires, `fn` runs once with the
    arguments of the most recent call and every caller still waiting receives
    that one result, so a superseded caller never sees a result computed from
    its own (stale) arguments. A caller that cancels its await is dropped.
    """

    def __init__(self, fn: Callable[..., Any], wait: float):
        self._fn = fn
        self._wait = wait
        self._timer: Optional[asyncio.TimerHandle] = None
        self._waiters: List[asyncio.Future] = []
        self._args: tuple = ()

    @property
    def pending(self) -> int:
        return sum(1 for w in self._waiters if not w.done())

    async def __call__(self, *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        if self._timer is not None:
            self._timer.cancel()
        self._args = args
        waiter = loop.create_future()
        self._waiters.append(waiter)
        self._timer = loop.call_later(self._wait, self._fire)
        return await waiter

    def _fire(self) -> None:
        self._timer = None
        waiters, self._waiters = self._waiters, []
        live = [w for w in waiters if not w.done()]
        if not live:
            return
        try:
            result = self._fn(*self._args)
        except Exception as e:
            for w in live:
                w.set_exception(e)
            return
        for w in live:
            w.set_result(result)


class SearchService:
    """
    Typeahead entry point: debounced, capped, mapped to select options.

    Each (session, index) pair gets its own debouncer, so coalescing only ever
    happens between calls one session makes against one index.
    """

    def __init__(self, limit: int = DEFAULT_RESULT_LIMIT, wait: float = DEFAULT_DEBOUNCE_SECONDS):
        self.limit = limit
        self.wait = wait
        self._debouncers: Dict[Tuple[Hashable, CodeSearchIndex], Debouncer] = {}

    @property
    def active_sessions(self) -> int:
        return len(self._debouncers)

    def _search_core(self, query: str, index: CodeSearchIndex) -> List[SelectOption]:
        start = time.perf_counter()
        matches = index.search(query)
        options = [SelectOption.from_coding(c) for c in matches[: self.limit]]
        elapsed = time.perf_counter() - start
        logger.info(f"query={query!r} matches={len(matches)} options={len(options)} elapsed={elapsed:.3f}s")
        return options

    async def search(self, query: str, index: CodeSearchIndex, session: Hashable = None) -> List[SelectOption]:
        key = (session, index)
        debounced = self._debouncers.get(key)
        if debounced is None:
            debounced = self._debouncers[key] = Debouncer(self._search_core, self.wait)
        try:
            return await debounced(query, index)
        finally:
            # idle debouncers are dropped so finished sessions do not accumulate
            if not debounced.pending and self._debouncers.get(key) is debounced:
                del self._debouncers[key]
