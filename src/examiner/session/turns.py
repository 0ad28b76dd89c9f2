"""Turn coordination: one candidate utterance in, one examiner line out."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Protocol

from loguru import logger

from examiner.errors import InvalidTransitionError, ServiceError
from examiner.prompts import SKIP_PROMPT
from examiner.providers import AssessmentService
from examiner.session.gates import CaptureGate, CaptureResult, GateHandle, PlaybackGate
from examiner.session.phases import detect
from examiner.types import CaptureErrorKind, Speaker, Transcript, Turn, TurnContext, TurnOutcome
from examiner.variants import ExamVariant

SKIP_TOKEN = "__skip__"
SKIPPED_TURN_TEXT = "(skipped)"
FALLBACK_EXAMINER_LINE = "Sorry, I encountered an error. Could you please repeat that?"

CAPTURE_ERROR_MESSAGES: dict[CaptureErrorKind, str] = {
    CaptureErrorKind.PERMISSION_DENIED: (
        "Microphone permission was denied. Please allow microphone access in your browser settings."
    ),
    CaptureErrorKind.NETWORK: "A network error occurred. Please check your connection and try again.",
    CaptureErrorKind.NO_SPEECH_DETECTED: "No speech was detected. Please try speaking again.",
    CaptureErrorKind.OTHER: "An error occurred while listening. Please try again.",
}


class TurnState(StrEnum):
    AWAITING_CANDIDATE = "awaiting_candidate"
    SENDING = "sending"
    AWAITING_EXAMINER_SPEECH = "awaiting_examiner_speech"


class TurnListener(Protocol):
    """Side channel observed by the session controller."""

    def current_phase(self) -> str: ...

    def phase_detected(self, phase: str) -> None: ...

    def points_awarded(self, points: int) -> None: ...

    def status_changed(self, message: str) -> None: ...

    def end_of_session(self) -> None: ...


@dataclass(frozen=True)
class _Exchange:
    message: str
    context: TurnContext
    record_points: bool = True


class TurnCoordinator:
    """Drive request/response cycles for one session.

    Capture may only start from ``AWAITING_CANDIDATE`` and playback only
    from ``SENDING``, so the two gates are never active together. Every
    async step is tagged with the session generation it was dispatched
    under; results that come back stale are dropped.
    """

    def __init__(
        self,
        *,
        variant: ExamVariant,
        service: AssessmentService,
        capture: CaptureGate,
        playback: PlaybackGate,
        transcript: Transcript,
        listener: TurnListener,
        context_factory: Callable[[tuple[Turn, ...]], TurnContext],
        generation: int,
        current_generation: Callable[[], int],
        auto_listen: bool = False,
    ) -> None:
        self._variant = variant
        self._service = service
        self._capture = capture
        self._playback = playback
        self._transcript = transcript
        self._listener = listener
        self._context_factory = context_factory
        self._generation = generation
        self._current_generation = current_generation
        self._auto_listen = auto_listen
        self._state = TurnState.AWAITING_CANDIDATE
        self._opened = False
        self._closed = False
        self._points: list[int] = []
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def state(self) -> TurnState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def exchange_points(self) -> tuple[int, ...]:
        return tuple(self._points)

    @property
    def capture_active(self) -> bool:
        return self._capture.active

    @property
    def playback_active(self) -> bool:
        return self._playback.active

    async def open(self) -> None:
        """Send the synthetic opening prompt and speak the examiner's first line."""
        if self._opened:
            raise InvalidTransitionError("opening line was already requested")
        self._opened = True
        self._state = TurnState.SENDING
        context = self._context_factory(self._transcript.snapshot())
        await self._run(self._exchange(_Exchange(self._variant.opening_prompt, context, record_points=False)))

    def listen(self) -> GateHandle[CaptureResult]:
        if self._closed:
            raise InvalidTransitionError("session is no longer running")
        if self._state is not TurnState.AWAITING_CANDIDATE or not self._opened:
            raise InvalidTransitionError(f"cannot listen while {self._state.value}")
        handle = self._capture.start()
        handle.add_done_callback(self._on_captured)
        return handle

    def stop_listening(self) -> None:
        self._capture.stop()

    async def submit(self, transcript: str) -> None:
        """Feed one transcript directly; blank input is discarded."""
        exchange = self._accept(transcript)
        if exchange is not None:
            await self._run(self._exchange(exchange))

    def close(self) -> None:
        """Cancel capture, playback and outstanding exchanges. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._capture.cancel()
        self._playback.cancel()
        for task in list(self._tasks):
            task.cancel()

    def _on_captured(self, result: CaptureResult) -> None:
        if self._closed or result.cancelled:
            return
        if result.error is not None:
            self._listener.status_changed(CAPTURE_ERROR_MESSAGES[result.error])
            return
        exchange = self._accept(result.transcript)
        if exchange is not None:
            self._spawn(self._exchange(exchange))

    def _accept(self, transcript: str) -> _Exchange | None:
        if self._closed:
            return None
        text = transcript.strip()
        if not text:
            logger.debug("turn.empty_transcript")
            return None
        if self._state is not TurnState.AWAITING_CANDIDATE or self._capture.active or not self._opened:
            raise InvalidTransitionError(f"cannot accept a transcript while {self._state.value}")

        context = self._context_factory(self._transcript.snapshot())
        skipped = text == SKIP_TOKEN
        self._transcript.append(Turn(Speaker.CANDIDATE, SKIPPED_TURN_TEXT if skipped else text))
        self._state = TurnState.SENDING
        return _Exchange(SKIP_PROMPT if skipped else text, context)

    async def _exchange(self, exchange: _Exchange) -> None:
        outcome: TurnOutcome | None = None
        try:
            outcome = await self._service.exchange_turn(exchange.context, exchange.message)
        except ServiceError as exc:
            logger.warning("turn.service_error phase={} error={!s}", exchange.context.phase, exc)
        except Exception:
            # External boundary: any failure becomes the fallback line.
            logger.exception("turn.service_failed phase={}", exchange.context.phase)

        if not self._is_current():
            logger.debug("turn.stale_result generation={}", self._generation)
            return

        examiner_text = outcome.examiner_text.strip() if outcome is not None else ""
        failed = not examiner_text
        if failed:
            examiner_text = FALLBACK_EXAMINER_LINE
        if exchange.record_points:
            points = 0 if failed or outcome is None else max(0, outcome.points_awarded or 0)
            self._points.append(points)
            self._listener.points_awarded(points)

        self._transcript.append(Turn(Speaker.EXAMINER, examiner_text))
        detection = detect(self._variant, examiner_text, self._listener.current_phase())
        if detection.next_phase is not None:
            self._listener.phase_detected(detection.next_phase)

        self._state = TurnState.AWAITING_EXAMINER_SPEECH
        result = await self._playback.speak(examiner_text).wait()
        if not result.finished or not self._is_current():
            return

        self._state = TurnState.AWAITING_CANDIDATE
        if detection.ends_session:
            self._listener.end_of_session()
            return
        if self._auto_listen:
            self.listen()

    def _is_current(self) -> bool:
        return not self._closed and self._current_generation() == self._generation

    async def _run(self, coro: Coroutine[Any, Any, None]) -> None:
        task = self._spawn(coro)
        await asyncio.wait({task})

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task[None]:
        task = asyncio.get_running_loop().create_task(coro, name="examiner.turn")
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.opt(exception=error).error("turn.task_failed")
