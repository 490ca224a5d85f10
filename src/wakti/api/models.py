"""Request payloads for the HTTP API."""

from pydantic import BaseModel, Field


class StartRecordingRequest(BaseModel):
    """Start or resume a recording."""

    kind: str = "note"
    title: str | None = Field(default=None, max_length=200)
    mime_type: str = "audio/webm"


class PaywallChange(BaseModel):
    """Open/close change reported by the client's paywall modal."""

    open: bool
