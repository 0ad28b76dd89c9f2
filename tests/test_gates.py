import asyncio

import pytest

from examiner.errors import CaptureError, GateBusyError, PlaybackInterrupted
from examiner.session.gates import CaptureGate, CaptureResult, PlaybackGate, PlaybackStatus, SpeechGuard, _Gate
from examiner.types import CaptureErrorKind


class _HeldCapture:
    """Listens until stopped, then returns whatever was typed so far."""

    def __init__(self, text: str = "", error: Exception | None = None) -> None:
        self.text = text
        self.error = error
        self.stops = 0
        self._released = asyncio.Event()

    async def listen(self) -> str:
        if self.error is not None:
            raise self.error
        await self._released.wait()
        return self.text

    def stop(self) -> None:
        self.stops += 1
        self._released.set()


class _Playback:
    def __init__(self, error: Exception | None = None, hold: bool = False) -> None:
        self.error = error
        self.hold = hold
        self.spoken: list[str] = []
        self.cancels = 0

    async def speak(self, text: str) -> None:
        self.spoken.append(text)
        if self.hold:
            await asyncio.Event().wait()
        if self.error is not None:
            raise self.error

    def cancel(self) -> None:
        self.cancels += 1


@pytest.mark.asyncio
async def test_stop_returns_captured_transcript_and_releases_guard() -> None:
    guard = SpeechGuard()
    provider = _HeldCapture(text="I live in Madrid")
    gate = CaptureGate(provider, guard)

    handle = gate.start()
    await asyncio.sleep(0)
    assert guard.active == "capture"
    gate.stop()
    result = await handle.wait()

    assert result == CaptureResult(transcript="I live in Madrid")
    assert result.ok
    assert guard.active is None
    assert not gate.active


@pytest.mark.asyncio
async def test_capture_error_is_tagged_with_its_kind() -> None:
    gate = CaptureGate(_HeldCapture(error=CaptureError(CaptureErrorKind.PERMISSION_DENIED)), SpeechGuard())

    result = await gate.start().wait()

    assert result.error is CaptureErrorKind.PERMISSION_DENIED
    assert not result.ok


@pytest.mark.asyncio
async def test_unexpected_capture_failure_maps_to_other() -> None:
    gate = CaptureGate(_HeldCapture(error=RuntimeError("device gone")), SpeechGuard())

    result = await gate.start().wait()

    assert result.error is CaptureErrorKind.OTHER


@pytest.mark.asyncio
async def test_cancelled_capture_frees_the_guard_for_playback_immediately() -> None:
    guard = SpeechGuard()
    capture_provider = _HeldCapture(text="ignored")
    capture = CaptureGate(capture_provider, guard)
    playback = PlaybackGate(_Playback(), guard)

    handle = capture.start()
    await asyncio.sleep(0)
    handle.cancel()
    spoken = playback.speak("Hello")

    assert handle.result().cancelled
    assert capture_provider.stops == 1
    assert (await spoken.wait()).status is PlaybackStatus.COMPLETED


@pytest.mark.asyncio
async def test_capture_and_playback_are_mutually_exclusive() -> None:
    guard = SpeechGuard()
    capture = CaptureGate(_HeldCapture(), guard)
    playback = PlaybackGate(_Playback(hold=True), guard)

    handle = capture.start()
    with pytest.raises(GateBusyError):
        playback.speak("Hello")
    with pytest.raises(GateBusyError):
        capture.start()

    handle.cancel()
    spoken = playback.speak("Hello")
    with pytest.raises(GateBusyError):
        capture.start()
    spoken.cancel()


@pytest.mark.asyncio
async def test_interrupted_and_failed_playback_still_count_as_finished() -> None:
    interrupted = await PlaybackGate(_Playback(error=PlaybackInterrupted()), SpeechGuard()).speak("Hi").wait()
    failed = await PlaybackGate(_Playback(error=RuntimeError("tts down")), SpeechGuard()).speak("Hi").wait()

    assert interrupted.status is PlaybackStatus.INTERRUPTED
    assert interrupted.finished
    assert failed.status is PlaybackStatus.FAILED
    assert failed.finished


@pytest.mark.asyncio
async def test_cancelled_playback_is_not_finished_and_interrupts_provider() -> None:
    provider = _Playback(hold=True)
    guard = SpeechGuard()
    gate = PlaybackGate(provider, guard)

    handle = gate.speak("A long examiner question")
    await asyncio.sleep(0)
    handle.cancel()
    result = await handle.wait()

    assert result.status is PlaybackStatus.CANCELLED
    assert not result.finished
    assert provider.cancels == 1
    assert guard.active is None


@pytest.mark.asyncio
async def test_cancel_after_completion_is_a_no_op() -> None:
    provider = _Playback()
    handle = PlaybackGate(provider, SpeechGuard()).speak("Done")

    result = await handle.wait()
    handle.cancel()

    assert result.status is PlaybackStatus.COMPLETED
    assert handle.result() is result
    assert provider.cancels == 0


@pytest.mark.asyncio
async def test_empty_text_completes_without_calling_provider() -> None:
    provider = _Playback()

    result = await PlaybackGate(provider, SpeechGuard()).speak("   ").wait()

    assert result.status is PlaybackStatus.COMPLETED
    assert provider.spoken == []


def test_gate_requires_cancel_behaviour_from_subclasses() -> None:
    class _Incomplete(_Gate[CaptureResult]):
        kind = "capture"

        def _cancelled_value(self) -> CaptureResult:
            return CaptureResult(cancelled=True)

    with pytest.raises(TypeError):
        _Incomplete(SpeechGuard())
