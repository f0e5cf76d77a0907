# mediarelay/core/session.py
"""
Acquisition session state machine.

    idle ──▶ probing ──▶ scanning ──▶ tunneling ──▶ ready
               │            │            │
               └────────────┴────────────┴──────▶ fallback

``probing`` is the client-side probe, ``scanning`` the server phase chain,
``tunneling`` the byte transfer.  Transitions only move forward.  A new
request calls ``reset()``, which bumps the generation; events tagged with an
older generation are ignored so a superseded flow cannot corrupt the session.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from mediarelay.core.domain import MediaKind
from mediarelay.core.errors import InvalidTransition
from mediarelay.infra.logging_config import get_logger

logger = get_logger(__name__)


class SessionStatus(str, Enum):
    IDLE = "idle"
    PROBING = "probing"
    SCANNING = "scanning"
    TUNNELING = "tunneling"
    READY = "ready"
    FALLBACK = "fallback"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.READY, SessionStatus.FALLBACK)


_ALLOWED: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.IDLE: frozenset({SessionStatus.PROBING, SessionStatus.SCANNING}),
    SessionStatus.PROBING: frozenset({SessionStatus.SCANNING, SessionStatus.TUNNELING, SessionStatus.FALLBACK}),
    SessionStatus.SCANNING: frozenset({SessionStatus.TUNNELING, SessionStatus.FALLBACK}),
    SessionStatus.TUNNELING: frozenset({SessionStatus.READY, SessionStatus.FALLBACK}),
    SessionStatus.READY: frozenset(),
    SessionStatus.FALLBACK: frozenset(),
}


@dataclass
class AcquiredMedia:
    """Bytes fetched for one kind"""
    kind: MediaKind
    filename: str
    content_type: str
    data: bytes
    source_url: str

    @property
    def size_bytes(self) -> int:
        return len(self.data)


@dataclass
class AcquisitionSession:
    status: SessionStatus = SessionStatus.IDLE
    progress: int = 0
    results: dict[MediaKind, AcquiredMedia] = field(default_factory=dict)
    fallback_url: Optional[str] = None
    error: Optional[str] = None
    content_id: Optional[str] = None
    generation: int = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def reset(self, content_id: str) -> int:
        """Discard everything from the previous request. Returns the new generation."""
        self.generation += 1
        self.status = SessionStatus.IDLE
        self.progress = 0
        self.results = {}
        self.fallback_url = None
        self.error = None
        self.content_id = content_id
        logger.debug("Session reset for %s (generation=%d)", content_id, self.generation)
        return self.generation

    def is_current(self, generation: int) -> bool:
        return generation == self.generation

    def _move(self, generation: int, target: SessionStatus) -> bool:
        if not self.is_current(generation):
            logger.debug(
                "Ignoring stale %s event (generation %d, current %d)",
                target.value, generation, self.generation,
            )
            return False
        if target not in _ALLOWED[self.status]:
            raise InvalidTransition(f"{self.status.value} → {target.value} is not allowed")
        self.status = target
        return True

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def begin_probe(self, generation: int) -> bool:
        return self._move(generation, SessionStatus.PROBING)

    def begin_scan(self, generation: int) -> bool:
        return self._move(generation, SessionStatus.SCANNING)

    def begin_tunnel(self, generation: int) -> bool:
        moved = self._move(generation, SessionStatus.TUNNELING)
        if moved:
            self.progress = 0
        return moved

    def update_progress(self, generation: int, percent: float) -> bool:
        """Progress only moves forward while tunneling."""
        if not self.is_current(generation) or self.status is not SessionStatus.TUNNELING:
            return False
        value = max(0, min(100, int(percent)))
        if value > self.progress:
            self.progress = value
        return True

    def store_result(self, generation: int, media: AcquiredMedia) -> bool:
        if not self.is_current(generation):
            return False
        self.results[media.kind] = media
        return True

    def complete(self, generation: int) -> bool:
        moved = self._move(generation, SessionStatus.READY)
        if moved:
            self.progress = 100
        return moved

    def fail(self, generation: int, fallback_url: str, error: str | None = None) -> bool:
        moved = self._move(generation, SessionStatus.FALLBACK)
        if moved:
            self.fallback_url = fallback_url
            self.error = error
        return moved

    def snapshot(self) -> dict:
        """Plain-dict view for UI consumers"""
        return {
            "status": self.status.value,
            "progress": self.progress,
            "results": {
                kind.value: {
                    "filename": media.filename,
                    "content_type": media.content_type,
                    "size_bytes": media.size_bytes,
                }
                for kind, media in self.results.items()
            },
            "fallbackUrl": self.fallback_url,
            "error": self.error,
        }
