from typing import List, Optional

import pytest

from verbalist.extractor import ExtractionError, TranscriptionError
from verbalist.store import InMemoryTaskStore


class FakeAudio:
    def __init__(self, blob: Optional[bytes] = b"RIFF-audio", granted: bool = True) -> None:
        self.blob = blob
        self.granted = granted
        self.started = 0
        self.stopped = 0
        self.samples: List[float] = [0.2, 0.4]

    async def request_permission(self) -> bool:
        return self.granted

    def start(self) -> None:
        self.started += 1

    def stop(self) -> None:
        self.stopped += 1

    def get_recorded_blob(self) -> Optional[bytes]:
        return self.blob


class FakeExtractor:
    def __init__(
        self,
        transcript: str = "",
        titles: Optional[List[str]] = None,
        parsed_title: str = "Parsed task",
        transcribe_error: Optional[str] = None,
        extract_error: Optional[str] = None,
    ) -> None:
        self.transcript = transcript
        self.titles = titles or []
        self.parsed_title = parsed_title
        self.transcribe_error = transcribe_error
        self.extract_error = extract_error
        self.transcribed: List[bytes] = []
        self.extracted: List[str] = []

    async def transcribe(self, audio: bytes) -> str:
        self.transcribed.append(audio)
        if self.transcribe_error:
            raise TranscriptionError(self.transcribe_error)
        return self.transcript

    async def extract_tasks(self, text: str) -> List[str]:
        self.extracted.append(text)
        if self.extract_error:
            raise ExtractionError(self.extract_error)
        return list(self.titles)

    async def parse_task(self, text: str) -> str:
        if self.extract_error:
            raise ExtractionError(self.extract_error)
        return self.parsed_title


@pytest.fixture
def store():
    return InMemoryTaskStore()


@pytest.fixture
def audio():
    return FakeAudio()
