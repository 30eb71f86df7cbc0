from __future__ import annotations

import asyncio
from typing import Callable, List, Optional, TypeVar

from loguru import logger

T = TypeVar("T")


class SearchDebouncer:
    """
    Caller-side scheduling around a synchronous search function.

    Each schedule() cancels the previous search if it has not fired yet, so at most
    one evaluation runs per settled query. Only the newest generation's result
    reaches `on_result`; a superseded task resolves to None.
    """
    def __init__(self,
                 search_fn: Callable[[str, int], List[T]],
                 delay_s: float = 0.3,
                 on_result: Optional[Callable[[str, List[T]], None]] = None):
        self.search_fn = search_fn
        self.delay_s = delay_s
        self.on_result = on_result
        self._generation = 0
        self._pending: Optional[asyncio.Task] = None

    @property
    def generation(self) -> int:
        return self._generation

    def schedule(self, query: str, limit: int = 50) -> asyncio.Task:
        self.cancel()
        self._pending = asyncio.get_running_loop().create_task(self._run(self._generation, query, limit))
        return self._pending

    def cancel(self) -> None:
        task = self._pending
        if task is not None and not task.done():
            task.cancel()
        self._generation += 1

    async def _run(self, generation: int, query: str, limit: int) -> Optional[List[T]]:
        await asyncio.sleep(self.delay_s)
        if generation != self._generation:
            return None
        if not (query or "").strip():
            results: List[T] = []
        else:
            try:
                results = self.search_fn(query, limit)
            except Exception as e:
                logger.exception(f"debounced search failed for '{query}': {e}")
                results = []
        if self.on_result is not None:
            self.on_result(query, results)
        return results
