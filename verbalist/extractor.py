"""Speech transcription and task extraction backends."""

from __future__ import annotations

import json
import logging
from typing import Any, List, Optional, Protocol

from openai import AsyncOpenAI, OpenAIError

from .config import AVAILABLE_LLM_MODELS, AVAILABLE_WHISPER_MODELS, load_config
from .models import Config

DEFAULT_BASE_URL = "https://api.groq.com/openai/v1"

TASK_LIST_PROMPT = """\
You are an expert task extraction assistant. The user will ramble about everything they need to do, \
and you need to extract ALL individual tasks from their speech.

Listen for:
- Specific actions they mention ("I need to", "I have to", "I should", "I must", "gotta", "need to remember to")
- Appointments and meetings ("meeting with", "call", "appointment", "see the doctor")
- Errands and shopping ("pick up", "buy", "get", "groceries", "pharmacy")
- Work tasks and deadlines ("finish the report", "email John", "prepare presentation")
- Personal tasks ("clean", "exercise", "walk the dog", "pay bills")

Return a JSON array of tasks in the order they were mentioned. Each task should have this structure:
{"title": "Short, actionable task title"}

Rules:
- Extract EVERY actionable item, no matter how small
- Make titles concise but clear
- Don't miss anything - be thorough

Return only the JSON array, no other text."""

SINGLE_TASK_PROMPT = """\
You are a task parser. Given raw spoken input, return only structured JSON for a task:
{"title": "Short, actionable task title"}
Only return the title field. Keep it simple and actionable. No extra commentary."""

FALLBACK_PREFIX = "Parse tasks from: "


class TranscriptionError(RuntimeError):
    """Raised when audio cannot be turned into text."""


class ExtractionError(RuntimeError):
    """Raised when the language model call for task extraction fails."""


class TranscriptionExtractor(Protocol):
    """Turns audio into text and text into task titles."""

    async def transcribe(self, audio: bytes) -> str:
        """Return the transcript of an audio blob."""

    async def extract_tasks(self, text: str) -> List[str]:
        """Return task titles in the order they were spoken."""

    async def parse_task(self, text: str) -> str:
        """Return a single task title for a short utterance."""


class GroqExtractor:
    """Hosted transcription and extraction through an OpenAI compatible API."""

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = DEFAULT_BASE_URL,
        llm_model: str = AVAILABLE_LLM_MODELS[0],
        whisper_model: str = AVAILABLE_WHISPER_MODELS[0],
        timeout: float = 30.0,
        client: Any = None,
    ) -> None:
        if client is None:
            if not api_key:
                raise ExtractionError("A Groq API key is required. Run `verbalist config --groq-api-key ...`.")
            client = AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout)
        self._client = client
        self.llm_model = AVAILABLE_LLM_MODELS[0]
        self.whisper_model = AVAILABLE_WHISPER_MODELS[0]
        self.set_llm_model(llm_model)
        self.set_whisper_model(whisper_model)

    @classmethod
    def from_config(cls, config: Config) -> "GroqExtractor":
        return cls(
            config.groq_api_key,
            base_url=config.api_base_url,
            llm_model=config.llm_model,
            whisper_model=config.whisper_model,
            timeout=config.api_timeout,
        )

    def set_llm_model(self, model: str) -> None:
        if model in AVAILABLE_LLM_MODELS:
            self.llm_model = model
        else:
            logging.debug("Ignoring unknown LLM model %s", model)

    def set_whisper_model(self, model: str) -> None:
        if model in AVAILABLE_WHISPER_MODELS:
            self.whisper_model = model
        else:
            logging.debug("Ignoring unknown whisper model %s", model)

    async def transcribe(self, audio: bytes) -> str:
        if not audio:
            raise TranscriptionError("Audio recording is empty")
        try:
            response = await self._client.audio.transcriptions.create(
                model=self.whisper_model,
                file=("audio.wav", audio),
            )
        except OpenAIError as exc:
            raise TranscriptionError(str(exc)) from exc
        return (response.text or "").strip()

    async def extract_tasks(self, text: str) -> List[str]:
        if not text.strip():
            return []
        content = await self._complete(TASK_LIST_PROMPT, text)
        return parse_task_list(content)

    async def parse_task(self, text: str) -> str:
        if not text.strip():
            raise ExtractionError("Nothing to parse")
        content = await self._complete(SINGLE_TASK_PROMPT, text)
        return parse_single_task(content)

    async def _complete(self, system_prompt: str, text: str) -> str:
        try:
            response = await self._client.chat.completions.create(
                model=self.llm_model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": text},
                ],
            )
        except OpenAIError as exc:
            raise ExtractionError(str(exc)) from exc
        if not response.choices or not response.choices[0].message.content:
            raise ExtractionError("No content in response")
        return response.choices[0].message.content


def _strip_code_fences(content: str) -> str:
    return content.replace("```json", "").replace("```", "").strip()


def _title_of(item: Any) -> str:
    if isinstance(item, dict):
        title = item.get("title")
        return "" if title is None else str(title).strip()
    if isinstance(item, str):
        return item.strip()
    raise TypeError(f"Unexpected task entry: {item!r}")


def parse_task_list(content: str) -> List[str]:
    """Decode a model reply into task titles.

    A reply that is not a JSON list of tasks becomes one synthetic task so that
    nothing the user said is silently lost.
    """

    cleaned = _strip_code_fences(content)
    try:
        payload = json.loads(cleaned)
        if isinstance(payload, dict):
            payload = payload["tasks"] if "tasks" in payload else [payload]
        if not isinstance(payload, list):
            raise TypeError("Expected a JSON array")
        titles = [_title_of(item) for item in payload]
    except (ValueError, TypeError) as exc:
        logging.debug("Falling back to a single task, unparseable reply: %s", exc)
        return [f"{FALLBACK_PREFIX}{cleaned[:100]}..."]
    return [title for title in titles if title]


def parse_single_task(content: str) -> str:
    cleaned = _strip_code_fences(content)
    try:
        title = _title_of(json.loads(cleaned))
    except (ValueError, TypeError):
        return content.strip()
    return title or content.strip()


def get_extractor(config: Optional[Config] = None) -> GroqExtractor:
    """Return an extractor built from the active configuration."""

    return GroqExtractor.from_config(config or load_config())
