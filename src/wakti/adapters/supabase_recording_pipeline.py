"""Supabase storage and edge functions for recording processing."""

import asyncio
import json
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from supabase import Client

from wakti.domain.recordings import AudioAsset, UploadedAsset
from wakti.services.recordings import RecordingPipeline

_EXTENSIONS = {
    "audio/webm": "webm",
    "audio/ogg": "ogg",
    "audio/mp3": "mp3",
    "audio/mpeg": "mp3",
    "audio/mp4": "m4a",
    "audio/wav": "wav",
}


def recording_path(user_id: str, recording_id: str, mime_type: str) -> str:
    """Build the storage path ``{user_id}/{recording_id}/recording.{ext}``."""
    base_type = mime_type.split(";", 1)[0].strip().lower()
    extension = _EXTENSIONS.get(base_type, "webm")
    return f"{user_id}/{recording_id}/recording.{extension}"


@dataclass
class SupabaseRecordingPipeline(RecordingPipeline):
    """Uploads to storage, then calls the transcription and summary functions."""

    client: Client
    bucket: str = "voice_recordings"
    expiry_days: int = 10
    clock: Callable[[], datetime] = lambda: datetime.now(tz=UTC)

    async def upload(self, asset: AudioAsset) -> UploadedAsset:
        """Store the audio and create its ``voice_summaries`` row."""
        if not asset.user_id:
            raise RuntimeError("User id is required to store recordings")
        return await asyncio.to_thread(self._upload, asset)

    async def transcribe(self, recording_id: str) -> str:
        """Run the transcription edge function."""
        payload = await asyncio.to_thread(
            self._invoke, "transcribe-audio", recording_id
        )
        text = payload.get("text") or payload.get("transcript")
        if not isinstance(text, str) or not text:
            raise RuntimeError("Transcription returned no text")
        return text

    async def summarize(self, recording_id: str) -> str:
        """Run the summary edge function."""
        payload = await asyncio.to_thread(
            self._invoke, "generate-summary", recording_id
        )
        summary = payload.get("summary")
        if not isinstance(summary, str) or not summary:
            raise RuntimeError("Summary generation returned no summary")
        return summary

    def _upload(self, asset: AudioAsset) -> UploadedAsset:
        path = recording_path(str(asset.user_id), asset.recording_id, asset.mime_type)
        bucket = self.client.storage.from_(self.bucket)
        bucket.upload(
            path=path,
            file=asset.data,
            file_options={"content-type": asset.mime_type, "upsert": "false"},
        )
        public_url = bucket.get_public_url(path)
        now = self.clock()
        title = asset.title or f"Recording {now:%Y-%m-%d %H:%M}"
        response = (
            self.client.table("voice_summaries")
            .insert(
                {
                    "id": asset.recording_id,
                    "user_id": asset.user_id,
                    "title": title,
                    "type": asset.kind,
                    "audio_url": public_url,
                    "duration": asset.duration_seconds,
                    "expires_at": (now + timedelta(days=self.expiry_days)).isoformat(),
                }
            )
            .execute()
        )
        if not response.data:
            raise RuntimeError("Failed to create voice summary record")
        return UploadedAsset(path=path, public_url=public_url or None)

    def _invoke(self, function_name: str, recording_id: str) -> dict[str, object]:
        data = self.client.functions.invoke(
            function_name,
            invoke_options={
                "body": {"recordingId": recording_id},
                "responseType": "json",
            },
        )
        if isinstance(data, bytes | str):
            data = json.loads(data or "{}")
        if not isinstance(data, dict):
            raise RuntimeError(f"Unexpected response from {function_name}")
        if data.get("error"):
            raise RuntimeError(f"{function_name} failed: {data['error']}")
        return data
