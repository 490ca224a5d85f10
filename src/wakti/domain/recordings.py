"""Domain models for segmented voice recordings."""

from dataclasses import dataclass
from enum import Enum


class RecordingState(Enum):
    """Lifecycle states of a recording session."""

    IDLE = "idle"
    RECORDING = "recording"
    PAUSED = "paused"
    PROCESSING = "processing"
    STOPPED = "stopped"
    ERROR = "error"


class PipelineStage(Enum):
    """Post-recording processing stages, in execution order."""

    UPLOAD = "upload"
    TRANSCRIBE = "transcribe"
    SUMMARIZE = "summarize"


@dataclass(frozen=True)
class RecordingSegment:
    """One contiguous capture interval."""

    blob: bytes
    duration_seconds: int
    part_number: int
    mime_type: str = "audio/webm"


@dataclass(frozen=True)
class AudioAsset:
    """Deliverable audio handed to the processing pipeline."""

    recording_id: str
    user_id: str | None
    kind: str
    data: bytes
    mime_type: str
    duration_seconds: int
    title: str | None = None


@dataclass(frozen=True)
class UploadedAsset:
    """Storage location of an uploaded recording."""

    path: str
    public_url: str | None


@dataclass
class PipelineResult:
    """Artifacts produced so far by the processing pipeline."""

    recording_id: str
    uploaded: UploadedAsset | None = None
    transcript: str | None = None
    summary: str | None = None
    failed_stage: PipelineStage | None = None
    error_message: str | None = None

    @property
    def is_complete(self) -> bool:
        return self.summary is not None and self.failed_stage is None

    def to_dict(self) -> dict[str, object]:
        return {
            "recording_id": self.recording_id,
            "path": self.uploaded.path if self.uploaded else None,
            "public_url": self.uploaded.public_url if self.uploaded else None,
            "transcript": self.transcript,
            "summary": self.summary,
            "failed_stage": self.failed_stage.value if self.failed_stage else None,
            "error": self.error_message,
        }
