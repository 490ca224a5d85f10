"""Capture device fed by audio chunks uploaded from the browser."""

from collections.abc import Callable
from dataclasses import dataclass, field

from wakti.services.errors import MixedEncodingError
from wakti.services.recordings import PushCaptureDevice


@dataclass
class ChunkCaptureDevice(PushCaptureDevice):
    """Accepts client-encoded chunks while armed.

    The encoding is negotiated once per recording; chunks declaring another
    MIME type are rejected so segments stay concatenable.
    """

    mime_type: str = "audio/webm"
    _on_data: Callable[[bytes], None] | None = field(default=None, init=False)

    @property
    def armed(self) -> bool:
        return self._on_data is not None

    def start(self, on_data: Callable[[bytes], None]) -> None:
        self._on_data = on_data

    def stop(self) -> None:
        self._on_data = None

    def push(self, chunk: bytes, mime_type: str | None = None) -> bool:
        if mime_type and _base_type(mime_type) != _base_type(self.mime_type):
            raise MixedEncodingError(
                f"Expected {self.mime_type} chunks, received {mime_type}"
            )
        if self._on_data is None:
            return False
        self._on_data(chunk)
        return True


def _base_type(mime_type: str) -> str:
    """Strip codec parameters, e.g. ``audio/webm;codecs=opus``."""
    return mime_type.split(";", 1)[0].strip().lower()
