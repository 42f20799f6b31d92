"""The capture pipeline: microphone to transcript to tasks to store.

One ``CaptureStateMachine`` drives a whole cycle::

    idle -> listening -> transcribing -> parsing -> committed -> idle
                                                 \\-> error -> idle

plus the single task path ``idle -> previewing -> committed``. All methods
must be called from the event loop that owns the machine; collaborators are
awaited and their results land back on that loop.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .audio import AudioCapture
from .extractor import TranscriptionExtractor
from .models import TaskRecord
from .observers import Subscribers
from .state import (
    COMMITTED,
    IDLE,
    LISTENING,
    PARSING,
    TRANSCRIBING,
    CaptureState,
    Error,
    Previewing,
)
from .store import RemoteStore, StoreError
from .tasklist import TaskListModel

BATCH_COMMIT_DELAY = 2.0
EDIT_COMMIT_DELAY = 1.5


class PipelineFailure(RuntimeError):
    """A failure that ends the current cycle in the error state."""

    message = "Capture failed"

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(f"{self.message}: {detail}" if detail else self.message)


class PermissionDenied(PipelineFailure):
    message = "Microphone access not granted"


class CaptureFailure(PipelineFailure):
    message = "No audio was recorded"


class TranscriptionFailure(PipelineFailure):
    message = "Transcription failed"


class ExtractionFailure(PipelineFailure):
    message = "Task extraction failed"


class EmptyExtraction(PipelineFailure):
    message = "No tasks found in your speech"


class PersistenceFailure(PipelineFailure):
    message = "Failed to save tasks"


class EmptyTitle(PipelineFailure):
    message = "Task title cannot be empty"


class TransitionError(RuntimeError):
    """Raised when a request is not valid in the current state."""


@dataclass
class CaptureSession:
    """Scratch data for one listening-to-commit cycle."""

    audio: Optional[bytes] = None
    transcript: str = ""
    titles: List[str] = field(default_factory=list)


class CaptureStateMachine:
    """Drives capture cycles and single task edits for one task list.

    ``audio`` and ``extractor`` may be omitted when only the preview path is
    used; a capture cycle without them ends in the error state.
    """

    def __init__(
        self,
        store: RemoteStore,
        tasks: TaskListModel,
        audio: Optional[AudioCapture] = None,
        extractor: Optional[TranscriptionExtractor] = None,
        batch_commit_delay: float = BATCH_COMMIT_DELAY,
        edit_commit_delay: float = EDIT_COMMIT_DELAY,
    ) -> None:
        self._audio = audio
        self._extractor = extractor
        self._store = store
        self._tasks = tasks
        self._batch_commit_delay = batch_commit_delay
        self._edit_commit_delay = edit_commit_delay
        self._state: CaptureState = IDLE
        self._generation = 0
        self._session: Optional[CaptureSession] = None
        self._reset_handle: Optional[asyncio.TimerHandle] = None
        self._starting = False
        self._committing = False
        self._changes: Subscribers[CaptureState] = Subscribers()

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def generation(self) -> int:
        """Incremented on every transition; scheduled resets compare against it."""

        return self._generation

    @property
    def session(self) -> Optional[CaptureSession]:
        return self._session

    @property
    def tasks(self) -> TaskListModel:
        return self._tasks

    @property
    def samples(self) -> List[float]:
        return self._audio.samples if self._audio is not None else []

    def subscribe(self, callback: Callable[[CaptureState], None]) -> Callable[[], None]:
        return self._changes.subscribe(callback)

    def close(self) -> None:
        self._cancel_reset()

    # -- capture cycle -------------------------------------------------

    async def start_listening(self) -> None:
        if isinstance(self._state, Error):
            self.dismiss_error()
        if self._state != IDLE or self._starting:
            raise TransitionError(f"Cannot start listening while {self._state}")
        if self._audio is None:
            self._fail(CaptureFailure("no recording device configured"))
            return

        self._starting = True
        try:
            granted = await self._audio.request_permission()
        except Exception as exc:  # noqa: BLE001 - a broken permission check counts as a refusal
            logging.warning("Permission check failed: %s", exc)
            granted = False
        finally:
            self._starting = False

        if self._state != IDLE:
            logging.debug("State moved to %s during the permission check; not recording", self._state)
            return
        if not granted:
            self._fail(PermissionDenied())
            return

        try:
            self._audio.start()
        except Exception as exc:  # noqa: BLE001 - device errors end the cycle
            self._fail(CaptureFailure(str(exc)))
            return
        self._session = CaptureSession()
        self._transition(LISTENING)

    async def stop_listening(self) -> None:
        """User asked to stop: end the recording and run the pipeline."""

        if self._state != LISTENING:
            logging.debug("Stop ignored while %s", self._state)
            return
        await self._process_recording()

    async def recording_finished(self) -> None:
        """The recorder stopped on its own: run the pipeline on what it has.

        The recorder is still asked to stop so that it finalises its blob;
        stopping an already closed stream does nothing.
        """

        if self._state != LISTENING:
            logging.debug("Recording end ignored while %s", self._state)
            return
        await self._process_recording()

    def cancel_listening(self) -> None:
        if self._state != LISTENING:
            return
        try:
            self._audio.stop()
        except Exception as exc:  # noqa: BLE001 - the recording is being thrown away anyway
            logging.debug("Error stopping cancelled recording: %s", exc)
        self._session = None
        self._transition(IDLE)

    def dismiss_error(self) -> None:
        if isinstance(self._state, Error):
            self._transition(IDLE)

    async def _process_recording(self) -> None:
        try:
            self._audio.stop()
        except Exception as exc:  # noqa: BLE001 - device errors end the cycle
            self._fail(CaptureFailure(str(exc)))
            return
        try:
            await self._run_pipeline()
        except PipelineFailure as failure:
            self._fail(failure)

    async def _run_pipeline(self) -> None:
        session = self._session or CaptureSession()
        self._session = session

        blob = self._audio.get_recorded_blob()
        if not blob:
            raise CaptureFailure()
        session.audio = blob

        self._transition(TRANSCRIBING)
        if self._extractor is None:
            raise TranscriptionFailure("no speech service configured")
        try:
            session.transcript = await self._extractor.transcribe(blob)
        except Exception as exc:  # noqa: BLE001 - any collaborator failure ends the cycle
            raise TranscriptionFailure(str(exc)) from exc

        self._transition(PARSING)
        try:
            titles = await self._extractor.extract_tasks(session.transcript)
        except Exception as exc:  # noqa: BLE001 - any collaborator failure ends the cycle
            raise ExtractionFailure(str(exc)) from exc
        session.titles = [title.strip() for title in titles if title and title.strip()]
        if not session.titles:
            raise EmptyExtraction()

        await self._commit_batch(session.titles)

    async def _commit_batch(self, titles: List[str]) -> None:
        drafts = self._tasks.assign_new_sort_orders([TaskRecord.new(title) for title in titles])
        saved: List[TaskRecord] = []
        last_error = ""
        for draft in drafts:
            try:
                saved.append(await self._store.create(draft))
            except StoreError as exc:
                logging.warning("Error saving task %r: %s", draft.title, exc)
                last_error = str(exc)

        if not saved:
            raise PersistenceFailure(last_error)
        if len(saved) < len(drafts):
            logging.warning("Saved %d of %d extracted tasks", len(saved), len(drafts))

        self._tasks.insert_at_head(saved)
        self._session = None
        self._transition(COMMITTED)
        self._schedule_reset(self._batch_commit_delay)

    # -- single task preview -------------------------------------------

    def preview(self, draft: TaskRecord) -> None:
        """Show a draft for confirmation, either an existing task or a new one."""

        if self._state != IDLE:
            raise TransitionError(f"Cannot preview a task while {self._state}")
        self._transition(Previewing(draft))

    async def review_text(self, text: str) -> None:
        """Parse one spoken or typed task and preview it."""

        if self._state != IDLE:
            raise TransitionError(f"Cannot parse a task while {self._state}")
        if self._extractor is None:
            self._fail(ExtractionFailure("no speech service configured"))
            return
        generation = self._generation
        try:
            title = await self._extractor.parse_task(text)
        except Exception as exc:  # noqa: BLE001 - any collaborator failure ends the cycle
            self._fail(ExtractionFailure(str(exc)))
            return
        if generation != self._generation:
            logging.debug("State moved to %s while parsing; dropping parsed task", self._state)
            return
        self.preview(TaskRecord.new(title))

    async def commit_preview(self, draft: Optional[TaskRecord] = None) -> Optional[TaskRecord]:
        """Save the previewed task, or ``draft`` when the user edited it."""

        if not isinstance(self._state, Previewing):
            raise TransitionError(f"Nothing to commit while {self._state}")
        if self._committing:
            raise TransitionError("The previewed task is already being saved")
        draft = draft or self._state.draft

        title = draft.title.strip()
        if not title:
            self._fail(EmptyTitle())
            return None
        draft = dataclasses.replace(draft, title=title)

        generation = self._generation
        self._committing = True
        try:
            if self._tasks.get(draft.id) is not None:
                saved = await self._tasks.update(draft)
            else:
                draft = self._tasks.assign_new_sort_orders([draft])[0]
                saved = await self._store.create(draft)
                self._tasks.insert_at_head([saved])
        except StoreError as exc:
            if generation == self._generation:
                self._fail(PersistenceFailure(str(exc)))
            return None
        finally:
            self._committing = False

        if generation != self._generation:
            logging.debug("State moved to %s while saving; not marking the task committed", self._state)
            return saved
        self._transition(COMMITTED)
        self._schedule_reset(self._edit_commit_delay)
        return saved

    def cancel_preview(self) -> None:
        """Discard the draft; ignored once the draft is being saved."""

        if self._committing:
            logging.debug("Cancel ignored, the previewed task is already being saved")
            return
        if isinstance(self._state, Previewing):
            self._transition(IDLE)

    # -- internals -----------------------------------------------------

    def _transition(self, new_state: CaptureState) -> None:
        previous = self._state
        self._cancel_reset()
        self._generation += 1
        self._state = new_state
        logging.debug("Capture state %s -> %s (generation %d)", previous, new_state, self._generation)
        if new_state != previous:
            self._changes.notify(new_state)

    def _fail(self, failure: PipelineFailure) -> None:
        logging.warning("Capture cycle failed: %s", failure)
        self._session = None
        self._transition(Error(str(failure)))

    def _schedule_reset(self, delay: float) -> None:
        generation = self._generation
        loop = asyncio.get_running_loop()
        self._reset_handle = loop.call_later(delay, self._reset_if_current, generation)

    def _reset_if_current(self, generation: int) -> None:
        if generation != self._generation:
            logging.debug("Ignoring stale reset for generation %d", generation)
            return
        self._reset_handle = None
        self._transition(IDLE)

    def _cancel_reset(self) -> None:
        if self._reset_handle is not None:
            self._reset_handle.cancel()
            self._reset_handle = None
