# mediarelay/client/probe.py
"""
Client-side probe: the resolver run from the caller's own network.

Three classes are consulted: Piped (A) and Invidious (B) with the larger
client tables, and the player API directly (C).  Each class list is shuffled,
the lists are interleaved round-robin and cut into waves of
``client_wave_size``.  A wave is one non-shuffled race; the first wave that
produces a candidate ends the probe.

    A: [a3, a1, a2]   B: [b2, b1]   C: [c1]
    round-robin → a3 b2 c1 a1 b1 a2 → waves of 4 → [a3 b2 c1 a1] [b1 a2]
"""
from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

import aiohttp

from mediarelay.core.domain import BackendName, Candidate, MediaKind, MirrorEndpoint
from mediarelay.core.racer import FleetRacer
from mediarelay.infra.backends import InnertubeFleet, InvidiousFleet, PipedFleet
from mediarelay.infra.backends.mirror_fleets import MirrorFleet
from mediarelay.infra.http_client import get_client_session
from mediarelay.infra.logging_config import get_logger, mask_url
from mediarelay.infra.network_context import NetworkContext

logger = get_logger(__name__)


def client_context(
    session_factory: Callable[[], aiohttp.ClientSession] = get_client_session,
    proxy: str | None = None,
    relay_base: str | None = None,
) -> NetworkContext:
    """
    Network context for the caller's machine.

    ``relay_base`` routes every request through the server's
    ``/api/download?action=proxy`` relay (for browsers bound by CORS).
    """
    from mediarelay.config import settings

    return NetworkContext(
        name="client",
        session_factory=session_factory,
        user_agent=settings.user_agent,
        proxy=proxy,
        relay_base=relay_base,
    )


@dataclass(frozen=True)
class ProbeTarget:
    """One (class, endpoint) pair scheduled in a wave."""
    fleet: MirrorFleet
    endpoint: MirrorEndpoint

    @property
    def base_url(self) -> str:
        return f"{self.fleet.name.value}:{self.endpoint.base_url}"


@dataclass
class ProbeReport:
    candidate: Optional[Candidate] = None
    logs: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.candidate is not None

    def log(self, message: str) -> None:
        stamp = datetime.now(timezone.utc).strftime("%H:%M:%S")
        self.logs.append(f"[{stamp}] {message}")
        logger.debug(message)


class ClientProbe:
    def __init__(
        self,
        context: NetworkContext | None = None,
        fleets: Sequence[MirrorFleet] | None = None,
        wave_size: int | None = None,
        rng: random.Random | None = None,
    ):
        from mediarelay.config import settings

        self.context = context or client_context()
        self.wave_size = wave_size or settings.client_wave_size
        self._rng = rng or random.Random()
        self.fleets = list(fleets) if fleets is not None else [
            PipedFleet(context=self.context, name=BackendName.CLIENT_MIRROR_A, client=True),
            InvidiousFleet(context=self.context, name=BackendName.CLIENT_MIRROR_B, client=True),
            InnertubeFleet(context=self.context),
        ]

    def build_waves(self) -> list[list[ProbeTarget]]:
        per_class: list[list[ProbeTarget]] = []
        for fleet in self.fleets:
            targets = [ProbeTarget(fleet, endpoint) for endpoint in fleet.endpoints]
            self._rng.shuffle(targets)
            per_class.append(targets)

        interleaved: list[ProbeTarget] = []
        for i in range(max((len(t) for t in per_class), default=0)):
            for targets in per_class:
                if i < len(targets):
                    interleaved.append(targets[i])

        size = max(self.wave_size, 1)
        return [interleaved[i:i + size] for i in range(0, len(interleaved), size)]

    async def probe(self, content_id: str, kind: MediaKind) -> ProbeReport:
        """Race the waves in order. Never raises; a miss is an empty report."""
        report = ProbeReport()
        waves = self.build_waves()
        report.log(f"Client probe for {content_id} ({kind.value}): {len(waves)} wave(s)")

        for number, wave in enumerate(waves, start=1):
            report.log(f"Wave {number}: {', '.join(mask_url(t.endpoint.base_url) for t in wave)}")
            racer = FleetRacer(subset_size=len(wave), rng=self._rng, label=f"client-wave-{number}")
            candidate = await racer.race(
                wave,
                lambda target: target.fleet.probe(target.endpoint, content_id, kind),
                report.errors,
                shuffle=False,
            )
            if candidate is not None:
                report.candidate = candidate
                report.log(f"Wave {number} resolved via {candidate.origin_backend.value}")
                return report
            report.log(f"Wave {number} exhausted")

        report.log("All client-side attempts exhausted")
        return report
