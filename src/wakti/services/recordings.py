"""Segmented voice recording with pause/resume and post-stop processing."""

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable
from uuid import uuid4

from wakti.domain.recordings import (
    AudioAsset,
    PipelineResult,
    PipelineStage,
    RecordingSegment,
    RecordingState,
    UploadedAsset,
)
from wakti.services.errors import (
    CaptureDeviceError,
    InvalidRecordingState,
    MixedEncodingError,
    PipelineStageError,
)

MAX_RECORDING_SECONDS = 7200

_STAGE_MESSAGES = {
    PipelineStage.UPLOAD: "Failed to upload recording",
    PipelineStage.TRANSCRIBE: "Failed to transcribe recording",
    PipelineStage.SUMMARIZE: "Failed to generate summary",
}

_logger = logging.getLogger(__name__)


class CaptureDevice(Protocol):
    """Audio source producing encoded chunks while started."""

    mime_type: str

    def start(self, on_data: Callable[[bytes], None]) -> None:
        """Begin capture, delivering chunks to ``on_data``."""

    def stop(self) -> None:
        """Halt capture; the device may be started again afterwards."""


class RecordingPipeline(Protocol):
    """Upload, transcription and summarization collaborators."""

    async def upload(self, asset: AudioAsset) -> UploadedAsset:
        """Store the audio and return its location."""

    async def transcribe(self, recording_id: str) -> str:
        """Return the transcript for an uploaded recording."""

    async def summarize(self, recording_id: str) -> str:
        """Return a summary for a transcribed recording."""


def merge_segments(segments: Sequence[RecordingSegment]) -> bytes:
    """Concatenate segment payloads in ascending part number order."""
    if not segments:
        return b""
    mime_types = {segment.mime_type for segment in segments}
    if len(mime_types) > 1:
        raise MixedEncodingError(
            f"Cannot merge segments with encodings {sorted(mime_types)}"
        )
    ordered = sorted(segments, key=lambda segment: segment.part_number)
    return b"".join(segment.blob for segment in ordered)


@dataclass
class SegmentedRecorder:
    """State machine for one logical recording made of 1..N segments."""

    device: CaptureDevice
    pipeline: RecordingPipeline
    user_id: str | None = None
    max_duration_seconds: int = MAX_RECORDING_SECONDS
    tick_interval_seconds: float | None = 1.0
    id_factory: Callable[[], str] = lambda: str(uuid4())

    state: RecordingState = field(default=RecordingState.IDLE, init=False)
    segments: list[RecordingSegment] = field(default_factory=list, init=False)
    current_part_index: int = field(default=1, init=False)
    elapsed_seconds: int = field(default=0, init=False)
    recording_id: str | None = field(default=None, init=False)
    kind: str = field(default="note", init=False)
    title: str | None = field(default=None, init=False)
    ceiling_reached: bool = field(default=False, init=False)
    notice: str | None = field(default=None, init=False)
    error_message: str | None = field(default=None, init=False)
    result: PipelineResult | None = field(default=None, init=False)
    _chunks: list[bytes] = field(default_factory=list, init=False)
    _timer_task: asyncio.Task[None] | None = field(default=None, init=False)
    _timer_token: int = field(default=0, init=False)

    @property
    def total_duration_seconds(self) -> int:
        committed = sum(segment.duration_seconds for segment in self.segments)
        return committed + self.elapsed_seconds

    def start(self, kind: str = "note", title: str | None = None) -> None:
        """Start a new recording, or resume a paused one."""
        if self.state is RecordingState.RECORDING:
            return
        if self.state is RecordingState.PROCESSING:
            raise InvalidRecordingState("start", self.state)
        if self.state is RecordingState.PAUSED and self.ceiling_reached:
            raise InvalidRecordingState("resume", self.state)
        if self.state is not RecordingState.PAUSED:
            self._clear()
            self.recording_id = self.id_factory()
            self.kind = kind
            self.title = title
        self._chunks = []
        try:
            self.device.start(self._on_data)
        except Exception as exc:
            self.state = RecordingState.ERROR
            self.error_message = (
                "Failed to start recording. Please check microphone permission."
            )
            _logger.warning("Capture device failed to start: %s", exc)
            raise CaptureDeviceError(self.error_message) from exc
        self.state = RecordingState.RECORDING
        self._start_timer()
        _logger.info(
            "Recording %s part %s started (%s)",
            self.recording_id,
            self.current_part_index,
            self.device.mime_type,
        )

    def resume(self) -> None:
        """Resume a paused recording."""
        if self.state is RecordingState.PAUSED:
            self.start(self.kind, self.title)

    def pause(self) -> None:
        """Commit the live interval as a segment; no-op unless recording."""
        if self.state is not RecordingState.RECORDING:
            return
        self._stop_timer()
        self._stop_device()
        self._commit_segment()
        self.state = RecordingState.PAUSED

    def tick(self) -> None:
        """Advance the live timer by one second."""
        if self.state is not RecordingState.RECORDING:
            return
        self.elapsed_seconds += 1
        if self.total_duration_seconds >= self.max_duration_seconds:
            self._halt_at_ceiling()

    async def stop(self) -> PipelineResult | None:
        """Finish capture, merge segments and run the processing pipeline."""
        if self.state not in {RecordingState.RECORDING, RecordingState.PAUSED}:
            return self.result
        if self.state is RecordingState.RECORDING:
            self._stop_timer()
            self._stop_device()
            self._commit_segment()
        try:
            asset = self._build_asset()
        except MixedEncodingError as exc:
            self.state = RecordingState.ERROR
            self.error_message = str(exc)
            raise
        self.state = RecordingState.PROCESSING
        result = PipelineResult(recording_id=asset.recording_id)
        self.result = result

        stage = PipelineStage.UPLOAD
        try:
            result.uploaded = await self.pipeline.upload(asset)
            stage = PipelineStage.TRANSCRIBE
            result.transcript = await self.pipeline.transcribe(asset.recording_id)
            stage = PipelineStage.SUMMARIZE
            result.summary = await self.pipeline.summarize(asset.recording_id)
        except Exception as exc:
            message = _STAGE_MESSAGES[stage]
            _logger.exception(
                "Recording %s failed at %s stage", asset.recording_id, stage.value
            )
            result.failed_stage = stage
            result.error_message = message
            self.state = RecordingState.ERROR
            self.error_message = message
            raise PipelineStageError(stage, message, result) from exc

        self.state = RecordingState.STOPPED
        _logger.info(
            "Recording %s processed: %s segments, %ss",
            asset.recording_id,
            len(self.segments),
            asset.duration_seconds,
        )
        return result

    def cancel(self) -> None:
        """Discard buffered segments and release the device."""
        if self.state is RecordingState.PROCESSING:
            raise InvalidRecordingState("cancel", self.state)
        if self.state is RecordingState.RECORDING:
            self._stop_timer()
            try:
                self.device.stop()
            except Exception:
                _logger.exception("Capture device failed to stop during cancel")
        self._clear()

    def reset(self) -> None:
        """Return to idle, discarding any recording in progress."""
        self.cancel()

    def snapshot(self) -> dict[str, object]:
        """Return a serializable view of the recorder."""
        return {
            "recording_id": self.recording_id,
            "state": self.state.value,
            "kind": self.kind,
            "current_part_index": self.current_part_index,
            "elapsed_seconds": self.elapsed_seconds,
            "total_duration_seconds": self.total_duration_seconds,
            "segments": [
                {
                    "part_number": segment.part_number,
                    "duration_seconds": segment.duration_seconds,
                    "size_bytes": len(segment.blob),
                }
                for segment in self.segments
            ],
            "ceiling_reached": self.ceiling_reached,
            "notice": self.notice,
            "error": self.error_message,
            "result": self.result.to_dict() if self.result else None,
        }

    def _on_data(self, chunk: bytes) -> None:
        if chunk and self.state is RecordingState.RECORDING:
            self._chunks.append(chunk)

    def _commit_segment(self) -> None:
        segment = RecordingSegment(
            blob=b"".join(self._chunks),
            duration_seconds=self.elapsed_seconds,
            part_number=self.current_part_index,
            mime_type=self.device.mime_type,
        )
        self.segments.append(segment)
        self.current_part_index += 1
        self.elapsed_seconds = 0
        self._chunks = []

    def _build_asset(self) -> AudioAsset:
        if len(self.segments) == 1:
            data = self.segments[0].blob
        else:
            data = merge_segments(self.segments)
        return AudioAsset(
            recording_id=self.recording_id or self.id_factory(),
            user_id=self.user_id,
            kind=self.kind,
            data=data,
            mime_type=self.segments[0].mime_type,
            duration_seconds=self.total_duration_seconds,
            title=self.title,
        )

    def _halt_at_ceiling(self) -> None:
        self._stop_timer()
        self._stop_device()
        self._commit_segment()
        self.state = RecordingState.PAUSED
        self.ceiling_reached = True
        self.notice = "Maximum recording length of 2 hours reached. Stop to save."
        _logger.warning(
            "Recording %s reached the %ss limit",
            self.recording_id,
            self.max_duration_seconds,
        )

    def _stop_device(self) -> None:
        try:
            self.device.stop()
        except Exception as exc:
            self._stop_timer()
            self.state = RecordingState.ERROR
            self.error_message = "Recording device stopped unexpectedly."
            raise CaptureDeviceError(self.error_message) from exc

    def _start_timer(self) -> None:
        if self.tick_interval_seconds is None:
            return
        self._timer_token += 1
        self._timer_task = asyncio.get_running_loop().create_task(
            self._run_timer(self._timer_token)
        )

    def _stop_timer(self) -> None:
        self._timer_token += 1
        if self._timer_task is not None:
            self._timer_task.cancel()
            self._timer_task = None

    async def _run_timer(self, token: int) -> None:
        interval = self.tick_interval_seconds or 1.0
        while token == self._timer_token:
            await asyncio.sleep(interval)
            if token != self._timer_token:
                return
            self.tick()

    def _clear(self) -> None:
        self._stop_timer()
        self.state = RecordingState.IDLE
        self.segments = []
        self.current_part_index = 1
        self.elapsed_seconds = 0
        self.recording_id = None
        self.ceiling_reached = False
        self.notice = None
        self.error_message = None
        self.result = None
        self._chunks = []


@runtime_checkable
class PushCaptureDevice(CaptureDevice, Protocol):
    """Capture device fed by chunks pushed from a remote client."""

    def push(self, chunk: bytes, mime_type: str | None = None) -> bool:
        """Deliver a chunk; return False when the device is not armed."""


@dataclass
class RecordingRegistry:
    """Keeps the active recorder for each user."""

    factory: Callable[[str, str], SegmentedRecorder]
    _recorders: dict[str, SegmentedRecorder] = field(default_factory=dict, init=False)

    def get(self, user_id: str) -> SegmentedRecorder | None:
        return self._recorders.get(user_id)

    def start(
        self, user_id: str, mime_type: str, kind: str = "note", title: str | None = None
    ) -> SegmentedRecorder:
        """Start or resume the user's recording."""
        recorder = self._recorders.get(user_id)
        active = {
            RecordingState.RECORDING,
            RecordingState.PAUSED,
            RecordingState.PROCESSING,
        }
        if recorder is None or recorder.state not in active:
            recorder = self.factory(user_id, mime_type)
            self._recorders[user_id] = recorder
        recorder.start(kind, title)
        return recorder

    def push_chunk(self, user_id: str, chunk: bytes, mime_type: str | None) -> bool:
        """Forward a client chunk to the user's capture device."""
        recorder = self._recorders.get(user_id)
        if recorder is None:
            return False
        device = recorder.device
        if not isinstance(device, PushCaptureDevice):
            raise TypeError("Recorder device does not accept pushed chunks")
        return device.push(chunk, mime_type)

    def discard(self, user_id: str) -> None:
        recorder = self._recorders.pop(user_id, None)
        if recorder is not None and recorder.state is not RecordingState.PROCESSING:
            recorder.cancel()

    def discard_all(self) -> None:
        for user_id in list(self._recorders):
            self.discard(user_id)
