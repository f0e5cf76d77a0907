# mediarelay/transport/schemas.py
from typing import Literal

from pydantic import BaseModel


class StreamLink(BaseModel):
    url: str
    filename: str


class ProbeOut(BaseModel):
    audio: StreamLink | None = None
    video: StreamLink | None = None
    fallbackUrl: str
    status: Literal["ready", "fallback_required"]


class UrlOut(BaseModel):
    url: str
    title: str
    filename: str


class ErrorOut(BaseModel):
    error: str
    request_id: str | None = None
