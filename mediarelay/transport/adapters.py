# mediarelay/transport/adapters.py
"""
Convert ``/api/download`` query parameters into domain requests.
Pure converters, no resolution logic.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional

from mediarelay.core.domain import MediaKind, MediaRequest, RequestMode
from mediarelay.core.errors import InvalidParameter, MissingIdentifier

_TRUE = {"", "1", "true", "yes", "on"}


def _flag(params: Mapping[str, str], name: str) -> bool:
    """``?pipe``, ``?pipe=1`` and ``?pipe=true`` all count as set."""
    value = params.get(name)
    return value is not None and value.strip().lower() in _TRUE


@dataclass(frozen=True)
class DownloadQuery:
    content_id: Optional[str]
    kind: MediaKind
    pipe: bool = False
    get_url: bool = False
    direct_url: Optional[str] = None
    action: Optional[str] = None
    url: Optional[str] = None
    title: Optional[str] = None

    @property
    def is_proxy(self) -> bool:
        return self.action == "proxy"

    @property
    def mode(self) -> RequestMode:
        return RequestMode.TUNNEL if (self.pipe or self.get_url) else RequestMode.PROBE

    def require_id(self) -> str:
        if not self.content_id:
            raise MissingIdentifier()
        return self.content_id

    def to_media_request(self) -> MediaRequest:
        if not self.content_id and not self.direct_url:
            raise MissingIdentifier()
        return MediaRequest(
            content_id=self.content_id or "",
            kind=self.kind,
            mode=self.mode,
            direct_url=self.direct_url,
            title=self.title,
        )


def parse_download_query(params: Mapping[str, str]) -> DownloadQuery:
    raw_kind = (params.get("type") or MediaKind.BOTH.value).strip().lower()
    try:
        kind = MediaKind(raw_kind)
    except ValueError:
        raise InvalidParameter(f"Unsupported type: {raw_kind}") from None

    content_id = (params.get("id") or "").strip() or None
    return DownloadQuery(
        content_id=content_id,
        kind=kind,
        pipe=_flag(params, "pipe"),
        get_url=_flag(params, "get_url"),
        direct_url=(params.get("direct_url") or "").strip() or None,
        action=(params.get("action") or "").strip().lower() or None,
        url=(params.get("url") or "").strip() or None,
        title=(params.get("title") or "").strip() or None,
    )
