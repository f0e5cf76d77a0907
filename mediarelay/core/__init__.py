# mediarelay/core/__init__.py
"""
Core pipeline -- transport-agnostic resolution logic.

This package contains the domain value objects, the adapter protocol,
the fleet racer, the phase chain and the acquisition session state machine.

Canonical imports:
    from mediarelay.core import PhaseChain, FleetRacer
    from mediarelay.core.domain import MediaRequest, Candidate, MediaKind
    from mediarelay.core.errors import ExtractionExhausted
"""
from mediarelay.core.domain import (  # noqa: F401
    BackendClass,
    BackendName,
    Candidate,
    MediaKind,
    MediaRequest,
    MirrorEndpoint,
    PhaseFailure,
    PhaseOutcome,
    PhaseSuccess,
    RequestMode,
)
from mediarelay.core.phase_chain import PhaseChain  # noqa: F401
from mediarelay.core.racer import FleetRacer  # noqa: F401
from mediarelay.core.session import AcquisitionSession, SessionStatus  # noqa: F401
