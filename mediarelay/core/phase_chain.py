# mediarelay/core/phase_chain.py
"""
Fixed-priority resolution chain.

Phases run strictly one after another in the order they were given
(native → library → mirror fleet A → mirror fleet B for the server).  The
first phase that produces a usable candidate ends the chain; later phases are
less reliable and are never consulted once something worked.  Every failed
phase contributes a ``P<n>:<message>`` tag, and when all of them fail the tags
are raised together in phase order as ``ExtractionExhausted``.
"""
from __future__ import annotations

from typing import Sequence

from mediarelay.core.domain import (
    Candidate,
    MediaKind,
    PhaseFailure,
    PhaseOutcome,
    PhaseSuccess,
)
from mediarelay.core.errors import ExtractionExhausted, FleetExhausted
from mediarelay.core.ports import BackendAdapter
from mediarelay.infra.logging_config import get_logger, LogContext
from mediarelay.infra.metrics import RelayMetrics

logger = get_logger(__name__)


class PhaseChain:
    def __init__(self, adapters: Sequence[BackendAdapter]):
        if not adapters:
            raise ValueError("PhaseChain needs at least one adapter")
        self.adapters = list(adapters)

    async def resolve_outcomes(self, content_id: str, kind: MediaKind) -> list[PhaseOutcome]:
        """
        Execute phases until one succeeds.

        Returns every outcome produced; the last one is a ``PhaseSuccess``
        unless all phases failed.
        """
        outcomes: list[PhaseOutcome] = []

        for number, adapter in enumerate(self.adapters, start=1):
            phase_name = f"P{number}"
            log = LogContext(logger, content_id=content_id, phase=phase_name)
            log.debug(f"Phase {phase_name} ({adapter.name.value}) starting for kind={kind.value}")

            with RelayMetrics.track_phase(adapter.name.value):
                outcome = await self._attempt(number, adapter, content_id, kind)
            outcomes.append(outcome)

            if isinstance(outcome, PhaseSuccess):
                RelayMetrics.phase_outcome(adapter.name.value, "success")
                log.info(f"Phase {phase_name} ({adapter.name.value}) resolved {kind.value}")
                return outcomes

            RelayMetrics.phase_outcome(adapter.name.value, "failure")
            log.warning(f"Phase {phase_name} ({adapter.name.value}) failed: {outcome.tag}")

        return outcomes

    async def resolve(self, content_id: str, kind: MediaKind) -> Candidate:
        """
        Resolve ``content_id`` to a candidate.

        Raises:
            ExtractionExhausted: every phase failed; carries the per-phase tags.
        """
        outcomes = await self.resolve_outcomes(content_id, kind)
        last = outcomes[-1]
        if isinstance(last, PhaseSuccess):
            return last.candidate

        RelayMetrics.extraction_exhausted()
        raise ExtractionExhausted([o.tag for o in outcomes if isinstance(o, PhaseFailure)])

    @staticmethod
    async def _attempt(
        number: int,
        adapter: BackendAdapter,
        content_id: str,
        kind: MediaKind,
    ) -> PhaseOutcome:
        try:
            candidate = await adapter.resolve(content_id, kind)
        except FleetExhausted as exc:
            return PhaseFailure(number, exc.errors or [exc.detail])
        except Exception as exc:
            return PhaseFailure(number, [str(exc) or exc.__class__.__name__])

        if candidate is None or not candidate.is_usable:
            return PhaseFailure(number, ["adapter returned no usable URL"])
        return PhaseSuccess(number, candidate)
