# mediarelay/core/racer.py
"""
First-success-wins executor over a pool of endpoints.

The racer shuffles the endpoint list, keeps a bounded subset and hands it to a
fixed-size pool of worker tasks.  Workers write into a single-slot future;
the first non-``None`` result settles the race.  An ``asyncio.Event`` acts as
the cancellation token: once it is set, workers skip endpoints they have not
started yet.  Probes already in flight are *not* cancelled, they run to
completion (or their own timeout) and their results are dropped.

No exception ever escapes ``race()``: every failure is recorded as an error
string and the race returns ``None`` when nothing succeeded.
"""
from __future__ import annotations

import asyncio
import random
from typing import Awaitable, Callable, Iterable, Optional, TypeVar

from mediarelay.infra.logging_config import get_logger
from mediarelay.infra.metrics import RelayMetrics

logger = get_logger(__name__)

E = TypeVar("E")
T = TypeVar("T")

# Strong references to worker tasks that outlive a won race.
_inflight: set[asyncio.Task] = set()


def _endpoint_label(endpoint) -> str:
    return getattr(endpoint, "base_url", None) or str(endpoint)


class FleetRacer:
    """
    Args:
        subset_size: Max endpoints consulted per race.
        probe_timeout: Per-probe timeout in seconds (``None`` = probe's own).
        concurrency: Worker pool size (defaults to ``subset_size``).
        rng: Random source for the shuffle (inject a seeded one in tests).
        label: Name used in logs and metrics.
    """

    def __init__(
        self,
        subset_size: int = 6,
        probe_timeout: float | None = None,
        concurrency: int | None = None,
        rng: random.Random | None = None,
        label: str = "fleet",
    ):
        self.subset_size = subset_size
        self.probe_timeout = probe_timeout
        self.concurrency = concurrency or subset_size
        self.label = label
        self._rng = rng or random.Random()

    def select(self, endpoints: Iterable[E], shuffle: bool = True) -> list[E]:
        """Uniform random permutation, then the first ``subset_size`` entries."""
        pool = list(endpoints)
        if shuffle:
            self._rng.shuffle(pool)
        return pool[: max(self.subset_size, 0)]

    async def race(
        self,
        endpoints: Iterable[E],
        probe: Callable[[E], Awaitable[Optional[T]]],
        errors: list[str] | None = None,
        shuffle: bool = True,
    ) -> Optional[T]:
        """
        Run ``probe`` against a bounded subset of ``endpoints`` concurrently.

        Returns the first non-``None`` probe result, or ``None`` once every
        consulted endpoint failed.  Per-endpoint failures are appended to
        ``errors`` as ``"<base_url>: <reason>"``.
        """
        selected = self.select(endpoints, shuffle=shuffle)
        if not selected:
            if errors is not None:
                errors.append(f"{self.label}: no endpoints configured")
            return None

        loop = asyncio.get_running_loop()
        winner: asyncio.Future = loop.create_future()
        won = asyncio.Event()
        queue: asyncio.Queue = asyncio.Queue()
        for endpoint in selected:
            queue.put_nowait(endpoint)
        remaining = len(selected)

        async def worker() -> None:
            nonlocal remaining
            while True:
                try:
                    endpoint = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                try:
                    if won.is_set():
                        continue
                    result = await self._attempt(endpoint, probe, errors)
                    if result is not None and not winner.done():
                        won.set()
                        winner.set_result(result)
                        logger.debug("%s race won by %s", self.label, _endpoint_label(endpoint))
                finally:
                    remaining -= 1
                    if remaining == 0 and not winner.done():
                        winner.set_result(None)

        for _ in range(min(self.concurrency, len(selected))):
            task = asyncio.create_task(worker())
            _inflight.add(task)
            task.add_done_callback(_inflight.discard)

        result = await winner
        RelayMetrics.race_finished("won" if result is not None else "exhausted")
        if result is None:
            logger.info("%s race exhausted: %d endpoint(s) failed", self.label, len(selected))
        return result

    async def _attempt(
        self,
        endpoint: E,
        probe: Callable[[E], Awaitable[Optional[T]]],
        errors: list[str] | None,
    ) -> Optional[T]:
        """One probe; converts every failure into an error entry."""
        label = _endpoint_label(endpoint)
        reason: str | None = None
        result: Optional[T] = None
        try:
            if self.probe_timeout is not None:
                result = await asyncio.wait_for(probe(endpoint), timeout=self.probe_timeout)
            else:
                result = await probe(endpoint)
            if result is None:
                reason = "empty result"
        except asyncio.TimeoutError:
            reason = f"timeout after {self.probe_timeout}s"
        except Exception as exc:
            reason = str(exc) or exc.__class__.__name__

        if reason is not None:
            RelayMetrics.endpoint_failed(self.label)
            logger.debug("%s endpoint %s failed: %s", self.label, label, reason)
            if errors is not None:
                errors.append(f"{label}: {reason}")
            return None
        return result
