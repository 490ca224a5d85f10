"""Errors surfaced to callers of the recording service."""

from wakti.domain.recordings import PipelineResult, PipelineStage, RecordingState


class RecordingError(Exception):
    """Base class for recording failures."""


class CaptureDeviceError(RecordingError):
    """The capture device could not be started or stopped."""


class InvalidRecordingState(RecordingError):
    """The requested operation is not allowed in the current state."""

    def __init__(self, action: str, state: RecordingState) -> None:
        super().__init__(f"Cannot {action} while {state.value}")
        self.action = action
        self.state = state


class MixedEncodingError(RecordingError):
    """Segments of one session were captured with different encodings."""


class PipelineStageError(RecordingError):
    """A post-recording stage failed; earlier artifacts stay on ``result``."""

    def __init__(
        self, stage: PipelineStage, message: str, result: PipelineResult
    ) -> None:
        super().__init__(message)
        self.stage = stage
        self.message = message
        self.result = result
