"""Session state machine: idle -> running -> finalizing -> results."""

from __future__ import annotations

import asyncio
import random
import uuid
from collections.abc import Sequence

from loguru import logger

from examiner.errors import InvalidTransitionError
from examiner.hook_runtime import HookRuntime
from examiner.hookspecs import create_plugin_manager
from examiner.logging_utils import session_scope
from examiner.prompts import FALLBACK_PICTURE_URL, artifact_prompt
from examiner.providers import AssessmentService, SpeechCaptureProvider, SpeechPlaybackProvider
from examiner.session.clock import DEFAULT_TICK_SECONDS, Clock
from examiner.session.gates import CaptureGate, CaptureResult, GateHandle, PlaybackGate, SpeechGuard
from examiner.session.results import ResultsAggregator
from examiner.session.turns import TurnCoordinator
from examiner.types import ArtifactRef, Result, Scenario, Session, SessionState, Transcript, Turn, TurnContext
from examiner.variants import ExamVariant


class SessionController:
    """Own one live session at a time and react to the clock, the turn side channel and the host.

    Only this class mutates ``phase``, ``state`` and ``remaining_seconds``.
    Every cancel or restart bumps a generation counter; async work tagged
    with an older generation is ignored when it completes.
    """

    def __init__(
        self,
        *,
        variant: ExamVariant,
        service: AssessmentService,
        capture: SpeechCaptureProvider,
        playback: SpeechPlaybackProvider,
        hooks: HookRuntime | None = None,
        duration_seconds: int | None = None,
        tick_seconds: float = DEFAULT_TICK_SECONDS,
        auto_listen: bool = False,
        rng: random.Random | None = None,
    ) -> None:
        self._variant = variant
        self._service = service
        self._capture_provider = capture
        self._playback_provider = playback
        self._hooks = hooks or HookRuntime(create_plugin_manager())
        self._duration_seconds = duration_seconds if duration_seconds is not None else variant.duration_seconds
        self._tick_seconds = tick_seconds
        self._auto_listen = auto_listen
        self._rng = rng
        self._generation = 0
        self._session: Session | None = None
        self._scenario: Scenario | None = None
        self._transcript = Transcript()
        self._result: Result | None = None
        self._status = ""
        self._artifact: ArtifactRef | None = None
        self._clock: Clock | None = None
        self._coordinator: TurnCoordinator | None = None
        self._aggregator: ResultsAggregator | None = None
        self._artifact_task: asyncio.Task[ArtifactRef] | None = None
        self._finalize_task: asyncio.Task[None] | None = None
        self._finished = asyncio.Event()

    @property
    def variant(self) -> ExamVariant:
        return self._variant

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def state(self) -> SessionState:
        if self._session is None:
            return SessionState.IDLE
        return self._session.state

    @property
    def phase(self) -> str | None:
        return self._session.phase if self._session is not None else None

    @property
    def remaining_seconds(self) -> int:
        if self._session is None:
            return self._duration_seconds
        return self._session.remaining_seconds

    @property
    def transcript(self) -> tuple[Turn, ...]:
        return self._transcript.snapshot()

    @property
    def result(self) -> Result | None:
        return self._result

    @property
    def status(self) -> str:
        return self._status

    @property
    def artifact(self) -> ArtifactRef | None:
        return self._artifact

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def coordinator(self) -> TurnCoordinator | None:
        return self._coordinator

    @property
    def points(self) -> int:
        if self._coordinator is None:
            return 0
        return sum(self._coordinator.exchange_points)

    @property
    def awarded_points(self) -> int:
        """Exchange points plus the completion bonus once a scored result exists."""
        if self._result is None or self._result.summary_degraded:
            return self.points
        return self.points + self._variant.completion_points(self._result.overall_score)

    async def start(self, *, topic_title: str = "", topic_points: Sequence[str] = ()) -> None:
        """Create a fresh session, start the clock and obtain the examiner's opening line."""
        if self.state in (SessionState.RUNNING, SessionState.FINALIZING):
            raise InvalidTransitionError(f"cannot start while {self.state.value}")

        self._generation += 1
        generation = self._generation
        session = Session(
            id=uuid.uuid4().hex[:12],
            variant=self._variant.name,
            phase=self._variant.initial_phase,
            remaining_seconds=self._duration_seconds,
        )
        self._session = session
        self._scenario = self._variant.prepare_scenario(
            topic_title=topic_title,
            topic_points=topic_points,
            rng=self._rng,
        )
        self._transcript = Transcript()
        self._result = None
        self._status = ""
        self._artifact = None
        self._finished = asyncio.Event()

        guard = SpeechGuard()
        self._coordinator = TurnCoordinator(
            variant=self._variant,
            service=self._service,
            capture=CaptureGate(self._capture_provider, guard),
            playback=PlaybackGate(self._playback_provider, guard),
            transcript=self._transcript,
            listener=_ControllerListener(self, generation),
            context_factory=self._context,
            generation=generation,
            current_generation=lambda: self._generation,
            auto_listen=self._auto_listen,
        )
        self._aggregator = ResultsAggregator(self._service, self._context(()))
        self._clock = Clock(on_tick=self._on_tick, on_expired=self._on_expired, tick_seconds=self._tick_seconds)

        with session_scope(session.id):
            logger.info(
                "session.start id={} variant={} duration={}",
                session.id,
                session.variant,
                self._duration_seconds,
            )
            self._advance_state(SessionState.RUNNING)
            picture_prompt = self._variant.pick_picture_prompt(self._rng)
            if picture_prompt is not None:
                self._artifact_task = asyncio.get_running_loop().create_task(
                    self._generate_artifact(picture_prompt),
                    name="examiner.artifact",
                )
            self._clock.start(self._duration_seconds)
            await self._coordinator.open()

    def listen(self) -> GateHandle[CaptureResult]:
        coordinator = self._require_running()
        self._status = ""
        return coordinator.listen()

    def stop_listening(self) -> None:
        self._require_running().stop_listening()

    async def submit(self, transcript: str) -> None:
        """Feed a transcript as if capture produced it."""
        await self._require_running().submit(transcript)

    def cancel(self) -> None:
        """Abandon the attempt: no result is produced and the transcript is discarded."""
        if self.state not in (SessionState.RUNNING, SessionState.FINALIZING):
            raise InvalidTransitionError(f"cannot cancel while {self.state.value}")
        session = self._session
        self._generation += 1
        self._teardown()
        if self._aggregator is not None:
            self._aggregator.cancel()
        if self._finalize_task is not None and not self._finalize_task.done():
            self._finalize_task.cancel()
        self._session = None
        self._transcript = Transcript()
        self._result = None
        self._finished.set()
        if session is not None:
            logger.info("session.cancelled id={}", session.id)
            self._hooks.call_many_sync("state_changed", session_id=session.id, state=SessionState.IDLE)

    async def retake(self, *, topic_title: str = "", topic_points: Sequence[str] = ()) -> None:
        """Replace a finished session with a fresh attempt."""
        if self.state is not SessionState.RESULTS:
            raise InvalidTransitionError(f"cannot retake while {self.state.value}")
        await self.start(topic_title=topic_title, topic_points=topic_points)

    def back_to_dashboard(self) -> None:
        """Leave the results screen and drop the finished session."""
        if self.state in (SessionState.RUNNING, SessionState.FINALIZING):
            self.cancel()
            return
        session = self._session
        self._generation += 1
        self._session = None
        self._transcript = Transcript()
        self._result = None
        self._artifact = None
        if session is not None:
            self._hooks.call_many_sync("state_changed", session_id=session.id, state=SessionState.IDLE)

    async def wait_until_finished(self) -> Result | None:
        """Block until the session produced a result or was cancelled."""
        await self._finished.wait()
        return self._result

    def _context(self, history: tuple[Turn, ...]) -> TurnContext:
        session = self._session
        scenario = self._scenario or Scenario(variant=self._variant.name)
        return TurnContext(
            session_id=session.id if session is not None else "",
            phase=session.phase if session is not None else self._variant.initial_phase,
            scenario=scenario,
            instruction=self._variant.instruction(scenario),
            history=history,
        )

    def _require_running(self) -> TurnCoordinator:
        if self.state is not SessionState.RUNNING or self._coordinator is None:
            raise InvalidTransitionError(f"no running session (state={self.state.value})")
        return self._coordinator

    def _advance_state(self, state: SessionState) -> None:
        session = self._session
        if session is None:
            return
        if state.rank <= session.state.rank:
            raise InvalidTransitionError(f"state cannot move from {session.state.value} to {state.value}")
        session.state = state
        logger.info("session.state id={} state={}", session.id, state.value)
        self._hooks.call_many_sync("state_changed", session_id=session.id, state=state)

    def _on_tick(self, remaining: int) -> None:
        if self._session is None or self._session.state is not SessionState.RUNNING:
            return
        self._session.remaining_seconds = remaining

    def _on_expired(self) -> None:
        if self._session is None or self._session.state is not SessionState.RUNNING:
            return
        self._session.remaining_seconds = 0
        logger.info("session.expired id={}", self._session.id)
        self._begin_finalizing("expired")

    def _advance_phase(self, generation: int, phase: str) -> None:
        session = self._session
        if session is None or generation != self._generation or session.state is not SessionState.RUNNING:
            return
        if self._variant.next_phase(session.phase) != phase:
            logger.warning("session.phase_rejected current={} detected={}", session.phase, phase)
            return
        session.phase = phase
        logger.info("session.phase id={} phase={}", session.id, phase)
        self._hooks.call_many_sync("phase_changed", session_id=session.id, phase=phase)

    def _relay_points(self, generation: int, points: int) -> None:
        if self._session is None or generation != self._generation:
            return
        self._hooks.call_many_sync("points_awarded", session_id=self._session.id, points=points)

    def _set_status(self, generation: int, message: str) -> None:
        if self._session is None or generation != self._generation:
            return
        self._status = message
        self._hooks.call_many_sync("status_changed", session_id=self._session.id, message=message)

    def _end_of_session(self, generation: int) -> None:
        if self._session is None or generation != self._generation:
            return
        logger.info("session.end_phrase id={}", self._session.id)
        self._begin_finalizing("end_phrase")

    def _begin_finalizing(self, reason: str) -> None:
        session = self._session
        if session is None or session.state is not SessionState.RUNNING:
            return
        self._teardown(keep_artifact=True)
        self._advance_state(SessionState.FINALIZING)
        logger.info("session.finalizing id={} reason={} turns={}", session.id, reason, len(self._transcript))
        self._finalize_task = asyncio.get_running_loop().create_task(
            self._finalize(self._generation),
            name="examiner.finalize",
        )

    def _teardown(self, *, keep_artifact: bool = False) -> None:
        if self._clock is not None:
            self._clock.cancel()
        if self._coordinator is not None:
            self._coordinator.close()
        if self._artifact_task is not None and not keep_artifact:
            self._artifact_task.cancel()

    async def _finalize(self, generation: int) -> None:
        session = self._session
        aggregator = self._aggregator
        if session is None or aggregator is None:
            return
        with session_scope(session.id):
            artifact = await self._await_artifact()
            result = await aggregator.aggregate(self._transcript.snapshot(), artifact)
            if generation != self._generation:
                logger.debug("session.stale_result id={}", session.id)
                return
            self._result = result
            self._advance_state(SessionState.RESULTS)
            if result.summary_degraded:
                # No real score, so nothing is relayed to the profile.
                logger.warning("session.completed_unscored id={} points={}", session.id, self.points)
                self._finished.set()
                return
            points = self.awarded_points
            logger.info("session.completed id={} score={} points={}", session.id, result.overall_score, points)
            await self._hooks.call_many(
                "session_completed",
                session_id=session.id,
                points_awarded=points,
                overall_score=result.overall_score,
                result=result,
            )
            self._finished.set()

    async def _await_artifact(self) -> ArtifactRef | None:
        task = self._artifact_task
        if task is None:
            return None
        self._artifact_task = None
        if not task.done():
            await asyncio.wait({task})
        if task.cancelled():
            return self._artifact
        self._artifact = task.result()
        return self._artifact

    async def _generate_artifact(self, picture_prompt: str) -> ArtifactRef:
        try:
            artifact = await self._service.generate_artifact(artifact_prompt(picture_prompt))
        except Exception as exc:
            # Best effort: fall back to the static picture.
            logger.warning("session.artifact_failed error={!s}", exc)
            artifact = ArtifactRef(kind="image_url", value=FALLBACK_PICTURE_URL, prompt=picture_prompt)
        self._artifact = artifact
        return artifact


class _ControllerListener:
    """Adapts turn side-channel events to controller mutations for one generation."""

    def __init__(self, controller: SessionController, generation: int) -> None:
        self._controller = controller
        self._generation = generation

    def current_phase(self) -> str:
        return self._controller.phase or self._controller.variant.initial_phase

    def phase_detected(self, phase: str) -> None:
        self._controller._advance_phase(self._generation, phase)

    def points_awarded(self, points: int) -> None:
        self._controller._relay_points(self._generation, points)

    def status_changed(self, message: str) -> None:
        self._controller._set_status(self._generation, message)

    def end_of_session(self) -> None:
        self._controller._end_of_session(self._generation)
