import asyncio
import random
from collections.abc import Callable, Sequence

import pytest

from examiner.errors import InvalidTransitionError, ServiceError
from examiner.hook_runtime import HookRuntime
from examiner.hookspecs import create_plugin_manager, hookimpl
from examiner.prompts import END_OF_TEST_PHRASE, FALLBACK_PICTURE_URL
from examiner.session.controller import SessionController
from examiner.session.turns import TurnState
from examiner.types import (
    ArtifactRef,
    AssessmentSummary,
    Result,
    SessionState,
    Speaker,
    TranscriptAnalysis,
    Turn,
    TurnAnalysis,
    TurnContext,
    TurnOutcome,
)
from examiner.variants import A2_VARIANT, B1_VARIANT


class _ScriptedService:
    def __init__(self, replies: list[object], *, score: int = 85, artifact_error: bool = False) -> None:
        self.replies = list(replies)
        self.score = score
        self.artifact_error = artifact_error
        self.exchanges: list[str] = []
        self.summary_calls = 0
        self.analysis_artifacts: list[ArtifactRef | None] = []

    async def exchange_turn(self, context: TurnContext, candidate_text: str) -> TurnOutcome:
        self.exchanges.append(candidate_text)
        reply = self.replies.pop(0) if self.replies else "Please go on."
        if isinstance(reply, asyncio.Event):
            await reply.wait()
            return TurnOutcome(examiner_text="A reply that arrived too late.", points_awarded=10)
        return TurnOutcome(examiner_text=str(reply), points_awarded=10)

    async def final_assessment(self, context: TurnContext, transcript: Sequence[Turn]) -> AssessmentSummary:
        self.summary_calls += 1
        return AssessmentSummary(overall_score=self.score, strengths="Clear answers.", areas_for_improvement="Tenses.")

    async def transcript_analysis(
        self,
        context: TurnContext,
        transcript: Sequence[Turn],
        artifact: ArtifactRef | None,
    ) -> TranscriptAnalysis:
        self.analysis_artifacts.append(artifact)
        turns = [TurnAnalysis(user_turn=turn.text) for turn in transcript if turn.speaker is Speaker.CANDIDATE]
        return TranscriptAnalysis(conversation=turns)

    async def generate_artifact(self, prompt: str) -> ArtifactRef:
        if self.artifact_error:
            raise ServiceError("image model unavailable")
        return ArtifactRef(kind="description", value="Shoppers in a store.", prompt=prompt)


class _Capture:
    def __init__(self, lines: list[str], on_listen: Callable[[], None] | None = None) -> None:
        self.lines = list(lines)
        self.on_listen = on_listen

    async def listen(self) -> str:
        if self.on_listen is not None:
            self.on_listen()
        await asyncio.sleep(0)
        return self.lines.pop(0)

    def stop(self) -> None:
        return None


class _Playback:
    def __init__(self, on_speak: Callable[[str], None] | None = None) -> None:
        self.spoken: list[str] = []
        self.on_speak = on_speak

    async def speak(self, text: str) -> None:
        if self.on_speak is not None:
            self.on_speak(text)
        self.spoken.append(text)
        await asyncio.sleep(0)

    def cancel(self) -> None:
        return None


class _Observer:
    def __init__(self) -> None:
        self.states: list[SessionState] = []
        self.phases: list[str] = []
        self.completed: list[tuple[int, int, Result]] = []

    @hookimpl
    def state_changed(self, state: SessionState) -> None:
        self.states.append(state)

    @hookimpl
    def phase_changed(self, phase: str) -> None:
        self.phases.append(phase)

    @hookimpl
    def session_completed(self, points_awarded: int, overall_score: int, result: Result) -> None:
        self.completed.append((points_awarded, overall_score, result))


def _controller(
    service: _ScriptedService,
    *,
    variant=B1_VARIANT,
    capture: _Capture | None = None,
    playback: _Playback | None = None,
    observer: object | None = None,
    duration_seconds: int | None = None,
    tick_seconds: float = 1.0,
) -> SessionController:
    plugins = [observer] if observer is not None else []
    return SessionController(
        variant=variant,
        service=service,
        capture=capture or _Capture([]),
        playback=playback or _Playback(),
        hooks=HookRuntime(create_plugin_manager(*plugins)),
        duration_seconds=duration_seconds,
        tick_seconds=tick_seconds,
        rng=random.Random(7),
    )


async def _until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.001)


@pytest.mark.asyncio
async def test_start_runs_the_opening_exchange() -> None:
    service = _ScriptedService(["Hello. What is your topic?"])
    controller = _controller(service)

    await controller.start(topic_title="Football", topic_points=["History", "My team"])

    assert controller.state is SessionState.RUNNING
    assert controller.phase == "topic"
    assert controller.remaining_seconds == B1_VARIANT.duration_seconds
    assert [turn.text for turn in controller.transcript] == ["Hello. What is your topic?"]
    controller.cancel()


@pytest.mark.asyncio
async def test_end_phrase_finalizes_once_after_it_was_spoken() -> None:
    observer = _Observer()
    states_while_speaking: list[SessionState] = []
    controller: SessionController
    playback = _Playback(on_speak=lambda text: states_while_speaking.append(controller.state))
    service = _ScriptedService(
        [
            "Hello. Tell me about your topic.",
            "Thank you. Let's move on to the conversation phase.",
            END_OF_TEST_PHRASE,
        ],
        score=85,
    )
    controller = _controller(service, playback=playback, observer=observer)

    await controller.start(topic_title="Football")
    await controller.submit("My topic is football.")
    await controller.submit("I play every weekend.")
    result = await asyncio.wait_for(controller.wait_until_finished(), timeout=2)

    assert result is not None
    assert controller.state is SessionState.RESULTS
    assert playback.spoken[-1] == END_OF_TEST_PHRASE
    assert states_while_speaking == [SessionState.RUNNING] * 3
    assert service.summary_calls == 1
    assert len(controller.transcript) == 5
    assert observer.states == [SessionState.RUNNING, SessionState.FINALIZING, SessionState.RESULTS]
    assert observer.phases == ["conversation"]
    assert observer.completed == [(10 + 10 + 150, 85, result)]


@pytest.mark.asyncio
async def test_expiry_while_sending_discards_the_late_reply() -> None:
    held = asyncio.Event()
    service = _ScriptedService(["Hello.", held])
    controller = _controller(service, duration_seconds=5, tick_seconds=0.02)

    await controller.start()
    pending = asyncio.create_task(controller.submit("My answer"))
    result = await asyncio.wait_for(controller.wait_until_finished(), timeout=2)
    held.set()
    await pending
    await asyncio.sleep(0.01)

    assert result is not None
    assert controller.state is SessionState.RESULTS
    assert controller.remaining_seconds == 0
    assert [turn.text for turn in controller.transcript] == ["Hello.", "My answer"]
    assert [item.user_turn for item in result.transcript_analysis.conversation] == ["My answer"]


@pytest.mark.asyncio
async def test_cancel_returns_to_idle_without_a_result() -> None:
    observer = _Observer()
    service = _ScriptedService(["Hello."])
    controller = _controller(service, observer=observer)

    await controller.start()
    controller.cancel()

    assert controller.state is SessionState.IDLE
    assert controller.transcript == ()
    assert controller.result is None
    assert await controller.wait_until_finished() is None
    assert service.summary_calls == 0
    assert observer.states[-1] is SessionState.IDLE
    with pytest.raises(InvalidTransitionError):
        controller.cancel()


@pytest.mark.asyncio
async def test_controls_rejected_from_the_wrong_state() -> None:
    controller = _controller(_ScriptedService(["Hello."]))

    with pytest.raises(InvalidTransitionError):
        controller.listen()
    with pytest.raises(InvalidTransitionError):
        await controller.retake()

    await controller.start()
    with pytest.raises(InvalidTransitionError):
        await controller.start()
    controller.cancel()


@pytest.mark.asyncio
async def test_retake_and_back_to_dashboard_after_results() -> None:
    service = _ScriptedService(["Hello.", END_OF_TEST_PHRASE, "Welcome back."])
    controller = _controller(service)

    await controller.start()
    first_id = controller.session.id
    await controller.submit("Bye.")
    await asyncio.wait_for(controller.wait_until_finished(), timeout=2)

    await controller.retake()
    assert controller.state is SessionState.RUNNING
    assert controller.session.id != first_id
    assert controller.result is None
    assert [turn.text for turn in controller.transcript] == ["Welcome back."]

    controller.cancel()
    controller.back_to_dashboard()
    assert controller.state is SessionState.IDLE


@pytest.mark.asyncio
async def test_back_to_dashboard_drops_finished_session() -> None:
    service = _ScriptedService(["Hello.", END_OF_TEST_PHRASE])
    controller = _controller(service)

    await controller.start()
    await controller.submit("Bye.")
    await asyncio.wait_for(controller.wait_until_finished(), timeout=2)
    controller.back_to_dashboard()

    assert controller.state is SessionState.IDLE
    assert controller.result is None


@pytest.mark.asyncio
async def test_phase_only_moves_forward_one_step() -> None:
    observer = _Observer()
    service = _ScriptedService(
        [
            "Hello, what's your name?",
            "Now let's look at a picture.",
            "We are going to look at a picture again.",
            "Now let's talk about your holidays.",
            "Good. Let's talk about something else.",
        ]
    )
    controller = _controller(service, variant=A2_VARIANT, observer=observer)

    await controller.start()
    for answer in ("Ana", "A shop", "People", "Nice"):
        await controller.submit(answer)

    assert observer.phases == ["picture", "topic1"]
    assert controller.phase == "topic1"
    controller.cancel()


@pytest.mark.asyncio
async def test_capture_and_playback_never_overlap() -> None:
    overlaps: list[str] = []
    controller: SessionController

    def check_capture() -> None:
        if controller.coordinator.playback_active:
            overlaps.append("playback during capture")

    def check_playback(_text: str) -> None:
        if controller.coordinator.capture_active:
            overlaps.append("capture during playback")

    service = _ScriptedService(["Hello.", "Next question.", "And another."])
    controller = _controller(
        service,
        capture=_Capture(["first", "second"], on_listen=check_capture),
        playback=_Playback(on_speak=check_playback),
    )

    await controller.start()
    for _ in range(2):
        await controller.listen().wait()
        await _until(lambda: controller.coordinator.state is TurnState.AWAITING_CANDIDATE)

    assert overlaps == []
    assert len(controller.transcript) == 5
    controller.cancel()


@pytest.mark.asyncio
async def test_listen_is_rejected_while_the_examiner_speaks() -> None:
    release = asyncio.Event()
    controller: SessionController

    class _SlowPlayback(_Playback):
        async def speak(self, text: str) -> None:
            if self.spoken:
                await release.wait()
            self.spoken.append(text)

    controller = _controller(_ScriptedService(["Hello.", "Next."]), playback=_SlowPlayback())
    await controller.start()
    pending = asyncio.create_task(controller.submit("answer"))
    await _until(lambda: controller.coordinator.state is TurnState.AWAITING_EXAMINER_SPEECH)

    with pytest.raises(InvalidTransitionError):
        controller.listen()

    release.set()
    await pending
    controller.cancel()


@pytest.mark.asyncio
async def test_picture_artifact_falls_back_to_static_image() -> None:
    service = _ScriptedService(["Hello.", END_OF_TEST_PHRASE], artifact_error=True)
    controller = _controller(service, variant=A2_VARIANT)

    await controller.start()
    await controller.submit("Bye.")
    await asyncio.wait_for(controller.wait_until_finished(), timeout=2)

    assert controller.artifact is not None
    assert controller.artifact.value == FALLBACK_PICTURE_URL
    assert service.analysis_artifacts == [controller.artifact]


@pytest.mark.asyncio
async def test_failing_observer_does_not_break_the_session() -> None:
    errors: list[str] = []

    class _Broken:
        @hookimpl
        def state_changed(self, state: SessionState) -> None:
            raise RuntimeError(f"cannot render {state}")

        @hookimpl
        def on_error(self, stage: str, error: Exception) -> None:
            errors.append(stage)

    controller = _controller(_ScriptedService(["Hello.", END_OF_TEST_PHRASE]), observer=_Broken())

    await controller.start()
    await controller.submit("Bye.")
    result = await asyncio.wait_for(controller.wait_until_finished(), timeout=2)

    assert result is not None
    assert controller.state is SessionState.RESULTS
    assert errors and all(stage.startswith("state_changed:") for stage in errors)


@pytest.mark.asyncio
async def test_failed_summary_is_not_credited_as_a_score() -> None:
    observer = _Observer()

    class _NoSummary(_ScriptedService):
        async def final_assessment(self, context: TurnContext, transcript: Sequence[Turn]) -> AssessmentSummary:
            raise ServiceError("quota exceeded")

    controller = _controller(_NoSummary(["Hello.", END_OF_TEST_PHRASE]), observer=observer)

    await controller.start()
    await controller.submit("Bye.")
    result = await asyncio.wait_for(controller.wait_until_finished(), timeout=2)

    assert result is not None
    assert result.summary_degraded
    assert controller.state is SessionState.RESULTS
    assert controller.awarded_points == controller.points == 10
    assert observer.completed == []


@pytest.mark.asyncio
async def test_expiry_while_the_examiner_speaks_stops_playback() -> None:
    interrupted: list[str] = []

    class _EndlessPlayback(_Playback):
        async def speak(self, text: str) -> None:
            self.spoken.append(text)
            await asyncio.Event().wait()

        def cancel(self) -> None:
            interrupted.append(self.spoken[-1])

    controller = _controller(
        _ScriptedService(["Hello. Tell me about your topic."]),
        playback=_EndlessPlayback(),
        duration_seconds=3,
        tick_seconds=0.02,
    )

    await asyncio.wait_for(controller.start(), timeout=2)
    result = await asyncio.wait_for(controller.wait_until_finished(), timeout=2)

    assert result is not None
    assert controller.state is SessionState.RESULTS
    assert controller.remaining_seconds == 0
    assert not controller.coordinator.playback_active
    assert interrupted == ["Hello. Tell me about your topic."]
    assert [turn.text for turn in controller.transcript] == ["Hello. Tell me about your topic."]


@pytest.mark.asyncio
async def test_cancel_while_sending_ignores_the_late_reply() -> None:
    held = asyncio.Event()
    service = _ScriptedService(["Hello.", held, "Welcome again."])
    controller = _controller(service)

    await controller.start()
    pending = asyncio.create_task(controller.submit("My answer"))
    await _until(lambda: controller.coordinator.state is TurnState.SENDING)
    controller.cancel()
    await pending

    await controller.start()
    held.set()
    await asyncio.sleep(0.01)

    assert controller.state is SessionState.RUNNING
    assert service.exchanges[1] == "My answer"
    assert len(service.exchanges) == 3
    assert [turn.text for turn in controller.transcript] == ["Welcome again."]
    assert controller.points == 0
    controller.cancel()
