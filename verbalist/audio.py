"""Audio capture backends feeding the capture pipeline."""

from __future__ import annotations

import asyncio
import io
import logging
from collections import deque
from pathlib import Path
from typing import List, Optional, Protocol

import numpy as np


class AudioCapture(Protocol):
    """Records one utterance at a time and exposes live amplitude samples."""

    async def request_permission(self) -> bool:
        """Return whether the microphone may be used."""

    def start(self) -> None:
        ...

    def stop(self) -> None:
        ...

    def get_recorded_blob(self) -> Optional[bytes]:
        """Return the last recording, or None when nothing was captured."""

    @property
    def samples(self) -> List[float]:
        """Most recent normalised amplitude samples, oldest first."""


class AmplitudeMeter:
    """Turn raw audio chunks into smoothed 0..1 levels for a level display."""

    MIN_DB = -80.0

    def __init__(self, history_size: int = 24) -> None:
        self._history: deque[float] = deque(maxlen=history_size)

    @property
    def samples(self) -> List[float]:
        return list(self._history)

    def reset(self) -> None:
        self._history.clear()

    def update(self, audio_chunk: np.ndarray) -> float:
        if len(audio_chunk.shape) > 1:
            audio_chunk = audio_chunk.flatten()
        rms = float(np.sqrt(np.mean(np.square(audio_chunk)))) if audio_chunk.size else 0.0
        level = 20.0 * np.log10(max(rms, 1e-10))
        normalised = (max(self.MIN_DB, min(level, 0.0)) - self.MIN_DB) / -self.MIN_DB
        if self._history:
            normalised = self._history[-1] * 0.3 + normalised * 0.7
        self._history.append(float(normalised))
        return float(normalised)


class MicrophoneCapture:
    """Stream audio from the default microphone into an in-memory WAV blob."""

    def __init__(self, samplerate: int = 16000, channels: int = 1) -> None:
        try:
            import sounddevice as sd  # type: ignore
        except Exception as exc:  # pragma: no cover - optional dependency
            raise RuntimeError(
                "The `sounddevice` package is required for recording. Install PortAudio and sounddevice."
            ) from exc

        self._sd = sd
        self._samplerate = samplerate
        self._channels = channels
        self._stream: Optional[sd.InputStream] = None
        self._frames: list[np.ndarray] = []
        self._blob: Optional[bytes] = None
        self._meter = AmplitudeMeter()

    @property
    def samples(self) -> List[float]:
        return self._meter.samples

    async def request_permission(self) -> bool:
        try:
            await asyncio.to_thread(
                self._sd.check_input_settings,
                samplerate=self._samplerate,
                channels=self._channels,
            )
        except Exception as exc:  # noqa: BLE001 - any device failure means no microphone
            logging.warning("Microphone unavailable: %s", exc)
            return False
        return True

    def start(self) -> None:
        if self._stream is not None:
            return

        self._frames = []
        self._blob = None
        self._meter.reset()
        self._stream = self._sd.InputStream(
            samplerate=self._samplerate,
            channels=self._channels,
            dtype="float32",
            callback=self._callback,
        )
        self._stream.start()

    def stop(self) -> None:
        if self._stream is None:
            return

        self._stream.stop()
        self._stream.close()
        self._stream = None

        if not self._frames:
            logging.debug("Recording stopped without any audio frames")
            return

        audio = np.concatenate(self._frames, axis=0)
        self._frames = []

        try:
            import soundfile as sf  # type: ignore
        except Exception as exc:  # pragma: no cover - optional dependency
            raise RuntimeError("The `soundfile` package is required to encode recordings.") from exc

        buffer = io.BytesIO()
        sf.write(buffer, audio, self._samplerate, format="WAV")
        self._blob = buffer.getvalue()

    def get_recorded_blob(self) -> Optional[bytes]:
        return self._blob

    def _callback(self, indata, frames, time, status) -> None:  # type: ignore[override]
        if status:
            logging.debug("Recorder status: %s", status)
        self._frames.append(indata.copy())
        try:
            self._meter.update(indata)
        except Exception as exc:  # noqa: BLE001 - level display is advisory
            logging.debug("Amplitude meter error: %s", exc)


class FileCapture:
    """Treat an existing audio file as the recording of one capture cycle."""

    def __init__(self, audio_path: Path) -> None:
        self._path = audio_path
        self._recording = False
        self._blob: Optional[bytes] = None

    @property
    def samples(self) -> List[float]:
        return []

    async def request_permission(self) -> bool:
        return self._path.is_file()

    def start(self) -> None:
        self._recording = True
        self._blob = None

    def stop(self) -> None:
        if not self._recording:
            return
        self._recording = False
        try:
            data = self._path.read_bytes()
        except OSError as exc:
            logging.warning("Cannot read audio file %s: %s", self._path, exc)
            return
        self._blob = data or None

    def get_recorded_blob(self) -> Optional[bytes]:
        return self._blob
