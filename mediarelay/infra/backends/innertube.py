# mediarelay/infra/backends/innertube.py
"""
Client for the canonical host's internal player API.

    POST {host}/youtubei/v1/player?prettyPrint=false
    {"context": {"client": {...profile...}}, "videoId": "<id>", ...}
        → {"playabilityStatus": {...}, "videoDetails": {...}, "streamingData": {...}}

Each device profile impersonates a different first-party client.  Formats
come back either with a plain ``url`` or with a ``signatureCipher`` that has
to be deciphered before use.  ``streamingData.formats`` are muxed
(audio+video), ``streamingData.adaptiveFormats`` carry a single track.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from mediarelay.core.domain import MediaKind
from mediarelay.core.errors import NoUsableStream
from mediarelay.infra.backends.base import BaseBackend, mime_essence, pick_preferred

PLAYER_PATH = "/youtubei/v1/player?prettyPrint=false"


@dataclass(frozen=True)
class DeviceProfile:
    client_name: str
    client_version: str
    client_id: str
    user_agent: str
    extra: dict[str, Any] = field(default_factory=dict)
    embedded: bool = False

    def context(self, canonical_host: str) -> dict[str, Any]:
        client = {
            "clientName": self.client_name,
            "clientVersion": self.client_version,
            "hl": "en",
            "gl": "US",
            "userAgent": self.user_agent,
            **self.extra,
        }
        ctx: dict[str, Any] = {"client": client}
        if self.embedded:
            ctx["thirdParty"] = {"embedUrl": canonical_host}
        return ctx


PROFILES: dict[str, DeviceProfile] = {
    "ANDROID_VR": DeviceProfile(
        client_name="ANDROID_VR",
        client_version="1.60.19",
        client_id="28",
        user_agent=(
            "com.google.android.apps.youtube.vr.oculus/1.60.19 "
            "(Linux; U; Android 12L; eureka-user Build/SQ3A.220605.009.A1) gzip"
        ),
        extra={
            "deviceMake": "Oculus",
            "deviceModel": "Quest 3",
            "androidSdkVersion": 32,
            "osName": "Android",
            "osVersion": "12L",
        },
    ),
    "TVHTML5_SIMPLY_EMBEDDED_PLAYER": DeviceProfile(
        client_name="TVHTML5_SIMPLY_EMBEDDED_PLAYER",
        client_version="2.0",
        client_id="85",
        user_agent="Mozilla/5.0 (PlayStation; PlayStation 4/12.00) AppleWebKit/605.1.15 (KHTML, like Gecko)",
        embedded=True,
    ),
    "TVHTML5": DeviceProfile(
        client_name="TVHTML5",
        client_version="7.20250120.19.00",
        client_id="7",
        user_agent="Mozilla/5.0 (ChromiumStylePlatform) Cobalt/Version",
    ),
    "IOS": DeviceProfile(
        client_name="IOS",
        client_version="20.03.02",
        client_id="5",
        user_agent="com.google.ios.youtube/20.03.02 (iPhone16,2; U; CPU iOS 18_2_1 like Mac OS X;)",
        extra={
            "deviceMake": "Apple",
            "deviceModel": "iPhone16,2",
            "osName": "iPhone",
            "osVersion": "18.2.1.22C161",
        },
    ),
}


def get_profile(name: str) -> DeviceProfile:
    try:
        return PROFILES[name.upper()]
    except KeyError:
        raise ValueError(f"Unknown device profile: {name}") from None


@dataclass(frozen=True)
class StreamFormat:
    """One entry of ``streamingData``, flattened."""
    itag: int
    mime_type: str
    has_audio: bool
    has_video: bool
    url: Optional[str] = None
    signature_cipher: Optional[str] = None
    height: int = 0
    bitrate: int = 0

    @property
    def is_muxed(self) -> bool:
        return self.has_audio and self.has_video

    @property
    def is_audio_only(self) -> bool:
        return self.has_audio and not self.has_video

    @property
    def is_video_only(self) -> bool:
        return self.has_video and not self.has_audio


def parse_formats(payload: dict[str, Any]) -> list[StreamFormat]:
    streaming = payload.get("streamingData") or {}
    parsed: list[StreamFormat] = []

    for raw in streaming.get("formats") or []:
        parsed.append(_to_format(raw, muxed=True))
    for raw in streaming.get("adaptiveFormats") or []:
        parsed.append(_to_format(raw, muxed=False))
    return parsed


def _to_format(raw: dict[str, Any], muxed: bool) -> StreamFormat:
    mime = raw.get("mimeType") or ""
    is_audio_mime = mime.startswith("audio/")
    return StreamFormat(
        itag=int(raw.get("itag") or 0),
        mime_type=mime,
        has_audio=muxed or is_audio_mime,
        has_video=muxed or mime.startswith("video/"),
        url=raw.get("url"),
        signature_cipher=raw.get("signatureCipher") or raw.get("cipher"),
        height=int(raw.get("height") or 0),
        bitrate=int(raw.get("bitrate") or 0),
    )


def select_format(formats: list[StreamFormat], kind: MediaKind) -> Optional[StreamFormat]:
    """
    Audio: ``audio/mp4`` first, then any audio-only track (highest bitrate).
    Video: muxed 720p, then lower muxed resolutions, then any video-only track.
    """
    if kind.tunnel_kind is MediaKind.AUDIO:
        audio = sorted((f for f in formats if f.is_audio_only), key=lambda f: f.bitrate, reverse=True)
        return pick_preferred(audio, [
            lambda f: mime_essence(f.mime_type) == "audio/mp4",
            lambda f: True,
        ])

    muxed = sorted((f for f in formats if f.is_muxed), key=lambda f: f.height, reverse=True)
    video_only = sorted((f for f in formats if f.is_video_only), key=lambda f: (f.height, f.bitrate), reverse=True)
    return pick_preferred(muxed, [
        lambda f: f.height == 720,
        lambda f: f.height < 720,
    ]) or (video_only[0] if video_only else None)


def video_title(payload: dict[str, Any], fallback: str) -> str:
    return (payload.get("videoDetails") or {}).get("title") or fallback


class InnertubeClient(BaseBackend):
    """Thin player-API caller bound to one host. Not an adapter by itself."""

    def __init__(self, host: str, canonical_host: str, context=None, timeout: float = 10.0):
        super().__init__(context=context, timeout=timeout)
        self.host = host.rstrip("/")
        self.canonical_host = canonical_host.rstrip("/")

    async def player(self, content_id: str, profile: DeviceProfile) -> dict[str, Any]:
        """
        Fetch the player response for ``content_id`` as ``profile``.

        Raises:
            NoUsableStream: playability status is not OK.
            MirrorUnreachable / BackendTimeout: transport failure.
        """
        body = {
            "context": profile.context(f"{self.canonical_host}/watch?v={content_id}"),
            "videoId": content_id,
            "contentCheckOk": True,
            "racyCheckOk": True,
            "playbackContext": {
                "contentPlaybackContext": {"html5Preference": "HTML5_PREF_WANTS"},
            },
        }
        headers = {
            "User-Agent": profile.user_agent,
            "X-YouTube-Client-Name": profile.client_id,
            "X-YouTube-Client-Version": profile.client_version,
            "Origin": self.canonical_host,
            "Content-Type": "application/json",
        }
        payload = await self._post_json(f"{self.host}{PLAYER_PATH}", body, headers=headers)

        status = (payload.get("playabilityStatus") or {}).get("status", "UNKNOWN")
        if status != "OK":
            reason = (payload.get("playabilityStatus") or {}).get("reason") or status
            raise NoUsableStream(f"{profile.client_name}: {reason}")
        return payload
