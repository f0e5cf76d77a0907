# mediarelay/core/ports.py
from __future__ import annotations
from typing import Protocol
from mediarelay.core.domain import BackendName, Candidate, MediaKind


class BackendAdapter(Protocol):
    """
    Turns a content id into a candidate stream URL.

    Raises ``BackendError`` (or a subclass) when nothing usable was found;
    never returns ``None``.
    """

    name: BackendName

    async def resolve(self, content_id: str, kind: MediaKind) -> Candidate: ...
