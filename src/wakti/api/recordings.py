"""Recording endpoints backed by the segmented recorder."""

import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from wakti.api.dependencies import get_container, require_session
from wakti.api.models import StartRecordingRequest
from wakti.containers import AppContainer
from wakti.domain.access import AuthSession
from wakti.domain.recordings import RecordingState
from wakti.services.errors import (
    CaptureDeviceError,
    InvalidRecordingState,
    MixedEncodingError,
    PipelineStageError,
)
from wakti.services.recordings import SegmentedRecorder

router = APIRouter(prefix="/recordings", tags=["recordings"])

_logger = logging.getLogger(__name__)


def _current(container: AppContainer, session: AuthSession) -> SegmentedRecorder:
    recorder = container.recording_registry.get(str(session.user_id))
    if recorder is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="No active recording"
        )
    return recorder


@router.post("/start")
async def start_recording(
    payload: StartRecordingRequest,
    session: AuthSession = Depends(require_session),
    container: AppContainer = Depends(get_container),
) -> dict[str, object]:
    """Start a new recording or resume a paused one."""
    try:
        recorder = container.recording_registry.start(
            str(session.user_id),
            mime_type=payload.mime_type,
            kind=payload.kind,
            title=payload.title,
        )
    except CaptureDeviceError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)
        ) from exc
    except InvalidRecordingState as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail=str(exc)
        ) from exc
    return recorder.snapshot()


@router.post("/pause")
async def pause_recording(
    session: AuthSession = Depends(require_session),
    container: AppContainer = Depends(get_container),
) -> dict[str, object]:
    """Commit the current interval as a segment."""
    recorder = _current(container, session)
    try:
        recorder.pause()
    except CaptureDeviceError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)
        ) from exc
    return recorder.snapshot()


@router.post("/resume")
async def resume_recording(
    session: AuthSession = Depends(require_session),
    container: AppContainer = Depends(get_container),
) -> dict[str, object]:
    """Resume a paused recording."""
    recorder = _current(container, session)
    try:
        recorder.resume()
    except CaptureDeviceError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)
        ) from exc
    except InvalidRecordingState as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail=str(exc)
        ) from exc
    return recorder.snapshot()


@router.post("/chunks", status_code=status.HTTP_202_ACCEPTED)
async def push_chunk(
    request: Request,
    content_type: str | None = Header(default=None),
    session: AuthSession = Depends(require_session),
    container: AppContainer = Depends(get_container),
) -> dict[str, object]:
    """Accept an encoded audio chunk from the client."""
    chunk = await request.body()
    try:
        accepted = container.recording_registry.push_chunk(
            str(session.user_id), chunk, content_type
        )
    except MixedEncodingError as exc:
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE, detail=str(exc)
        ) from exc
    if not accepted:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail="Recording is not capturing"
        )
    return {"accepted": len(chunk)}


@router.post("/stop")
async def stop_recording(
    session: AuthSession = Depends(require_session),
    container: AppContainer = Depends(get_container),
) -> dict[str, object]:
    """Finish the recording and run upload, transcription and summary."""
    recorder = _current(container, session)
    try:
        await recorder.stop()
    except PipelineStageError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"stage": exc.stage.value, "message": exc.message},
        ) from exc
    except (CaptureDeviceError, MixedEncodingError) as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)
        ) from exc
    return recorder.snapshot()


@router.post("/cancel")
async def cancel_recording(
    session: AuthSession = Depends(require_session),
    container: AppContainer = Depends(get_container),
) -> dict[str, str]:
    """Discard the current recording."""
    recorder = container.recording_registry.get(str(session.user_id))
    if recorder is not None:
        if recorder.state is RecordingState.PROCESSING:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Recording is already processing",
            )
        _logger.info("Recording %s cancelled", recorder.recording_id)
        container.recording_registry.discard(str(session.user_id))
    return {"status": "ok"}


@router.get("/current")
async def current_recording(
    session: AuthSession = Depends(require_session),
    container: AppContainer = Depends(get_container),
) -> dict[str, object]:
    """Return the recorder state for the caller."""
    return _current(container, session).snapshot()
