"""Activation recorder: raw capture, MP3 transcoding and blob upload."""

import asyncio
from datetime import datetime
from pathlib import Path
from typing import Any

import pyaudio

from .config import (
    DEFAULT_CHANNELS,
    DEFAULT_RECORDINGS_DIR,
    DEFAULT_SAMPLE_RATE,
    FFMPEG_BINARY,
    MP3_BITRATE,
    RECORDER_CHUNK_SIZE,
    RECORDING_EXTENSION,
    RECORDING_PATH_PREFIX,
)
from .exceptions import RecordingError
from .interfaces import BlobStore, Clock
from .logging_utils import get_logger
from .models import RecordingClip
from .scheduler import SystemClock

logger = get_logger(__name__)


def recording_path(user_id: str, started_at: datetime) -> str:
    """
    Build the blob path for a clip.

    Returns:
        audio-recordings/<user_id>/recording-<timestamp>.mp3, with ':' and '.'
        in the ISO timestamp replaced by '-'
    """
    stamp = started_at.isoformat(timespec="milliseconds").replace(":", "-").replace(".", "-")
    return f"{RECORDING_PATH_PREFIX}/{user_id}/recording-{stamp}.{RECORDING_EXTENSION}"


class LocalBlobStore(BlobStore):
    """Blob store that writes objects below a local directory."""

    def __init__(self, root: str | Path = DEFAULT_RECORDINGS_DIR) -> None:
        self.root = Path(root).expanduser()

    async def upload(self, path: str, data: bytes) -> str:
        target = (self.root / path).resolve()
        if not target.is_relative_to(self.root.resolve()):
            raise RecordingError(f"Refusing to write outside blob root: {path}")

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)

        await asyncio.to_thread(_write)
        logger.debug(f"Stored {len(data)} bytes at {target}")
        return target.as_uri()


class Recorder:
    """
    Captures raw audio for one activation and publishes it as an MP3 clip.

    The capture stream is independent of the level meter's stream. PyAudio
    delivers fixed-size chunks on its own thread through the stream callback.
    """

    def __init__(
        self,
        blob_store: BlobStore,
        sample_rate: int = DEFAULT_SAMPLE_RATE,
        channels: int = DEFAULT_CHANNELS,
        chunk_size: int = RECORDER_CHUNK_SIZE,
        ffmpeg_binary: str = FFMPEG_BINARY,
        clock: Clock | None = None,
    ) -> None:
        self._blob_store = blob_store
        self.sample_rate = sample_rate
        self.channels = channels
        self.chunk_size = chunk_size
        self.ffmpeg_binary = ffmpeg_binary
        self.device_index: int | None = None
        self._clock = clock or SystemClock()

        self._pyaudio: Any | None = None
        self._stream: Any | None = None
        self._chunks: list[bytes] = []
        self._started_at: datetime | None = None

    def is_recording(self) -> bool:
        return self._stream is not None

    def start(self) -> None:
        """
        Start buffering raw audio.

        Raises:
            RecordingError: If the capture stream cannot be opened
        """
        if self._stream is not None:
            logger.warning("Recorder already running")
            return

        self._chunks = []
        self._started_at = self._clock.now()
        try:
            self._pyaudio = pyaudio.PyAudio()
            self._stream = self._pyaudio.open(
                format=pyaudio.paInt16,
                channels=self.channels,
                rate=self.sample_rate,
                input=True,
                input_device_index=self.device_index,
                frames_per_buffer=self.chunk_size,
                stream_callback=self._on_audio,
            )
            self._stream.start_stream()
        except OSError as e:
            self._release()
            raise RecordingError(f"Failed to start recording: {e}") from e
        logger.info("🔴 Recording started")

    def stop(self) -> RecordingClip | None:
        """
        Stop capture and return the buffered clip.

        Returns:
            The captured clip, or None if the recorder was not running
        """
        if self._stream is None:
            return None
        self._release()
        pcm = b"".join(self._chunks)
        self._chunks = []
        clip = RecordingClip(
            started_at=self._started_at or self._clock.now(),
            pcm=pcm,
            sample_rate=self.sample_rate,
            channels=self.channels,
        )
        logger.info(f"⏹️ Recording stopped ({clip.duration:.1f}s captured)")
        return clip

    async def stop_and_upload(self, user_id: str) -> str | None:
        """
        Stop capture, encode the clip and upload it.

        Args:
            user_id: Owner of the recording, used in the storage path

        Returns:
            Storage reference, or None if nothing was captured

        Raises:
            RecordingError: If transcoding or uploading fails
        """
        clip = self.stop()
        if clip is None or not clip.pcm:
            return None

        encoded = await self.transcode(clip)
        path = recording_path(user_id, clip.started_at)
        try:
            reference = await self._blob_store.upload(path, encoded)
        except RecordingError:
            raise
        except Exception as e:
            raise RecordingError(f"Upload of {path} failed: {e}") from e
        logger.info(f"☁️ Recording uploaded: {reference}")
        return reference

    async def transcode(self, clip: RecordingClip) -> bytes:
        """
        Encode raw 16-bit PCM to MP3 with ffmpeg.

        Raises:
            RecordingError: If ffmpeg is missing or exits with an error
        """
        command = [
            self.ffmpeg_binary,
            "-hide_banner",
            "-loglevel",
            "error",
            "-f",
            "s16le",
            "-ar",
            str(clip.sample_rate),
            "-ac",
            str(clip.channels),
            "-i",
            "pipe:0",
            "-c:a",
            "libmp3lame",
            "-b:a",
            MP3_BITRATE,
            "-f",
            "mp3",
            "pipe:1",
        ]
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise RecordingError(f"Cannot run {self.ffmpeg_binary}: {e}") from e

        stdout, stderr = await process.communicate(clip.pcm)
        if process.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            raise RecordingError(f"ffmpeg exited with {process.returncode}: {message}")
        if not stdout:
            raise RecordingError("ffmpeg produced no output")
        return stdout

    def _on_audio(self, in_data: bytes | None, frame_count: int, time_info: Any, status: int) -> tuple[None, int]:
        if in_data:
            self._chunks.append(in_data)
        return None, pyaudio.paContinue

    def _release(self) -> None:
        if self._stream is not None:
            try:
                self._stream.stop_stream()
                self._stream.close()
            except OSError as e:
                logger.debug(f"Error closing recorder stream: {e}")
            self._stream = None
        if self._pyaudio is not None:
            self._pyaudio.terminate()
            self._pyaudio = None
