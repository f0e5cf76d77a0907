# mediarelay/core/domain.py
from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union


# ============================================================================
# ENUMS
# ============================================================================

class MediaKind(str, Enum):
    AUDIO = "audio"
    VIDEO = "video"
    BOTH = "both"

    @property
    def concrete_kinds(self) -> tuple["MediaKind", ...]:
        """Kinds that are resolved independently for this request"""
        if self is MediaKind.BOTH:
            return (MediaKind.AUDIO, MediaKind.VIDEO)
        return (self,)

    @property
    def tunnel_kind(self) -> "MediaKind":
        """A single relayed body can only be one stream; 'both' relays the muxed video."""
        return MediaKind.VIDEO if self is MediaKind.BOTH else self


class RequestMode(str, Enum):
    PROBE = "probe"
    TUNNEL = "tunnel"


class BackendName(str, Enum):
    """Which adapter produced a candidate"""
    DIRECT = "direct"
    NATIVE = "native"
    LIBRARY = "library"
    MIRROR_A = "mirror_a"
    MIRROR_B = "mirror_b"
    CLIENT_MIRROR_A = "client_mirror_a"
    CLIENT_MIRROR_B = "client_mirror_b"
    CLIENT_MIRROR_C = "client_mirror_c"


class BackendClass(str, Enum):
    """API contract implemented by a mirror endpoint"""
    PIPED = "piped"
    INVIDIOUS = "invidious"
    INNERTUBE = "innertube"


# ============================================================================
# VALUE OBJECTS
# ============================================================================

@dataclass(frozen=True)
class MediaRequest:
    """One caller invocation. Immutable."""
    content_id: str
    kind: MediaKind = MediaKind.BOTH
    mode: RequestMode = RequestMode.PROBE
    direct_url: Optional[str] = None
    title: Optional[str] = None


@dataclass(frozen=True)
class Candidate:
    """
    A resolved upstream stream URL plus display title.

    Produced by exactly one adapter attempt and handed to whichever component
    consumes it next. Never cached across requests.
    """
    source_url: str
    title: str
    origin_backend: BackendName
    content_type: Optional[str] = None

    @property
    def is_usable(self) -> bool:
        return bool(self.source_url and self.source_url.startswith(("http://", "https://")))


@dataclass(frozen=True)
class MirrorEndpoint:
    base_url: str
    backend_class: BackendClass


# ============================================================================
# PHASE OUTCOMES
# ============================================================================

@dataclass(frozen=True)
class PhaseSuccess:
    phase: int
    candidate: Candidate

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class PhaseFailure:
    phase: int
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return False

    @property
    def tag(self) -> str:
        """``P<n>:<message>`` diagnostic tag"""
        return f"P{self.phase}:{'; '.join(self.errors) or 'unknown error'}"


PhaseOutcome = Union[PhaseSuccess, PhaseFailure]


# ============================================================================
# FILENAMES
# ============================================================================

_EXTENSIONS = {
    MediaKind.AUDIO: "m4a",
    MediaKind.VIDEO: "mp4",
}


def extension_for(kind: MediaKind) -> str:
    return _EXTENSIONS[kind.tunnel_kind]


_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9\s\-_]")


def sanitize_title(title: str) -> str:
    """
    Keep ASCII letters, digits, spaces, hyphens and underscores; collapse whitespace.

    The result goes into a Latin-1 encoded response header.
    """
    kept = _UNSAFE_FILENAME_CHARS.sub("", title)
    cleaned = " ".join(kept.split())
    return cleaned or "download"


def build_filename(title: str, kind: MediaKind) -> str:
    """
    >>> build_filename("Song: Title? (Live)", MediaKind.AUDIO)
    'Song Title Live.m4a'
    """
    return f"{sanitize_title(title)}.{extension_for(kind)}"
