# mediarelay/core/errors.py
"""
Typed errors for the resolution pipeline.

Each error carries the HTTP status code it maps to.  The transport layer
converts ``MediaRelayError`` subtypes into ``{"error": ...}`` JSON without
embedding pipeline logic in the route handlers.

Adapter-level errors (``BackendError`` and subclasses) never reach the
caller: the phase chain absorbs them and moves on to the next phase.
"""
from __future__ import annotations


PHASE_SEPARATOR = " | "


class MediaRelayError(Exception):
    """Base class for all pipeline errors."""

    status_code: int = 500

    def __init__(self, detail: str = "Internal error"):
        self.detail = detail
        super().__init__(detail)


class MissingIdentifier(MediaRelayError):
    """Request has neither ``id`` nor ``direct_url`` (400)."""

    status_code = 400

    def __init__(self, detail: str = "Missing video ID"):
        super().__init__(detail)


class InvalidUpstreamUrl(MediaRelayError):
    """Relay target is missing or not http(s) (400)."""

    status_code = 400


# ============================================================================
# ADAPTER-LEVEL (absorbed by the phase chain)
# ============================================================================

class BackendError(MediaRelayError):
    """One adapter or endpoint attempt failed."""


class BackendTimeout(BackendError):
    """Call exceeded its own timeout."""


class MirrorUnreachable(BackendError):
    """Network failure or non-2xx from a mirror / upstream API."""


class NoUsableStream(BackendError):
    """Backend answered but offered nothing playable for the requested kind."""


class FleetExhausted(BackendError):
    """Every consulted endpoint of a fleet failed."""

    def __init__(self, backend: str, errors: list[str]):
        self.errors = list(errors)
        detail = f"{backend}: all {len(self.errors)} endpoints failed"
        super().__init__(detail)


# ============================================================================
# SURFACED TO CALLERS
# ============================================================================

class ExtractionExhausted(MediaRelayError):
    """Every phase failed. ``detail`` preserves phase order."""

    status_code = 500

    def __init__(self, phase_errors: list[str]):
        self.phase_errors = list(phase_errors)
        super().__init__(
            "All extraction phases failed: " + PHASE_SEPARATOR.join(self.phase_errors)
        )


class StreamRelayFailure(MediaRelayError):
    """Resolved URL was rejected by its host at fetch time."""

    status_code = 500


class InvalidTransition(MediaRelayError):
    """Acquisition session moved backwards or skipped a state."""


class InvalidParameter(MediaRelayError):
    """Query parameter has an unsupported value (400)."""

    status_code = 400
