"""Mutually exclusive wrappers around speech capture and playback."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Literal

from loguru import logger

from examiner.errors import CaptureError, GateBusyError, PlaybackInterrupted
from examiner.providers import SpeechCaptureProvider, SpeechPlaybackProvider
from examiner.types import CaptureErrorKind

type GateKind = Literal["capture", "playback"]


@dataclass(frozen=True)
class CaptureResult:
    transcript: str = ""
    error: CaptureErrorKind | None = None
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and not self.cancelled


class PlaybackStatus(StrEnum):
    COMPLETED = "completed"
    INTERRUPTED = "interrupted"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class PlaybackResult:
    text: str
    status: PlaybackStatus

    @property
    def finished(self) -> bool:
        """Whether the turn may proceed; interruptions and failures count as finished."""
        return self.status is not PlaybackStatus.CANCELLED


class SpeechGuard:
    """Tracks the single speech resource shared by both gates."""

    def __init__(self) -> None:
        self._active: GateKind | None = None

    @property
    def active(self) -> GateKind | None:
        return self._active

    def acquire(self, kind: GateKind) -> None:
        if self._active is not None:
            raise GateBusyError(f"cannot start {kind} while {self._active} is active")
        self._active = kind

    def release(self, kind: GateKind) -> None:
        if self._active == kind:
            self._active = None


class GateHandle[T]:
    """Cancelable future for one gate operation.

    ``cancel()`` is always safe, including after completion, and the
    completion always carries a tagged result instead of raising.
    """

    def __init__(self, future: asyncio.Future[T], on_cancel: Callable[[], None]) -> None:
        self._future = future
        self._on_cancel = on_cancel

    def done(self) -> bool:
        return self._future.done()

    def cancel(self) -> None:
        if self._future.done():
            return
        self._on_cancel()

    def result(self) -> T:
        return self._future.result()

    def add_done_callback(self, callback: Callable[[T], None]) -> None:
        self._future.add_done_callback(lambda future: callback(future.result()))

    async def wait(self) -> T:
        return await asyncio.shield(self._future)


class _Gate[T](ABC):
    kind: GateKind

    def __init__(self, guard: SpeechGuard) -> None:
        self._guard = guard
        self._future: asyncio.Future[T] | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def active(self) -> bool:
        return self._future is not None and not self._future.done()

    def _launch(self, worker: Callable[[asyncio.Future[T]], Coroutine[Any, Any, None]]) -> GateHandle[T]:
        if self.active:
            raise GateBusyError(f"{self.kind} already has an outstanding operation")
        self._guard.acquire(self.kind)
        loop = asyncio.get_running_loop()
        future: asyncio.Future[T] = loop.create_future()
        self._future = future
        self._task = loop.create_task(worker(future), name=f"examiner.{self.kind}")
        return GateHandle(future, self._cancel)

    def _resolve(self, future: asyncio.Future[T], value: T) -> None:
        if not future.done():
            future.set_result(value)
        if future is self._future:
            self._guard.release(self.kind)

    @abstractmethod
    def _cancelled_value(self) -> T:
        """Result handed to waiters when the operation is cancelled."""

    @abstractmethod
    def _interrupt_provider(self) -> None:
        """Ask the provider to stop the running operation."""

    def _cancel(self) -> None:
        future = self._future
        if future is None or future.done():
            return
        self._resolve(future, self._cancelled_value())
        self._interrupt_provider()
        if self._task is not None and not self._task.done():
            self._task.cancel()


class CaptureGate(_Gate[CaptureResult]):
    """Listen for exactly one utterance at a time."""

    kind: GateKind = "capture"

    def __init__(self, provider: SpeechCaptureProvider, guard: SpeechGuard) -> None:
        super().__init__(guard)
        self._provider = provider

    def start(self) -> GateHandle[CaptureResult]:
        return self._launch(self._listen)

    def stop(self) -> None:
        """End listening; the pending handle resolves with what was captured."""
        if self.active:
            self._provider.stop()

    def cancel(self) -> None:
        self._cancel()

    async def _listen(self, future: asyncio.Future[CaptureResult]) -> None:
        try:
            transcript = await self._provider.listen()
            result = CaptureResult(transcript=transcript or "")
        except CaptureError as exc:
            logger.info("capture.error kind={}", exc.kind.value)
            result = CaptureResult(error=exc.kind)
        except asyncio.CancelledError:
            self._resolve(future, self._cancelled_value())
            raise
        except Exception:
            # Capture providers wrap platform APIs; anything unexpected is an "other" failure.
            logger.exception("capture.provider_failed")
            result = CaptureResult(error=CaptureErrorKind.OTHER)
        self._resolve(future, result)

    def _cancelled_value(self) -> CaptureResult:
        return CaptureResult(cancelled=True)

    def _interrupt_provider(self) -> None:
        self._provider.stop()


class PlaybackGate(_Gate[PlaybackResult]):
    """Speak one examiner line at a time."""

    kind: GateKind = "playback"

    def __init__(self, provider: SpeechPlaybackProvider, guard: SpeechGuard) -> None:
        super().__init__(guard)
        self._provider = provider
        self._text = ""

    def speak(self, text: str) -> GateHandle[PlaybackResult]:
        self._text = text
        return self._launch(self._speak)

    def cancel(self) -> None:
        self._cancel()

    async def _speak(self, future: asyncio.Future[PlaybackResult]) -> None:
        text = self._text
        if not text.strip():
            self._resolve(future, PlaybackResult(text, PlaybackStatus.COMPLETED))
            return
        try:
            await self._provider.speak(text)
            result = PlaybackResult(text, PlaybackStatus.COMPLETED)
        except PlaybackInterrupted:
            logger.debug("playback.interrupted")
            result = PlaybackResult(text, PlaybackStatus.INTERRUPTED)
        except asyncio.CancelledError:
            self._resolve(future, self._cancelled_value())
            raise
        except Exception:
            # Playback failures end the line early but never stall the turn.
            logger.exception("playback.provider_failed")
            result = PlaybackResult(text, PlaybackStatus.FAILED)
        self._resolve(future, result)

    def _cancelled_value(self) -> PlaybackResult:
        return PlaybackResult(self._text, PlaybackStatus.CANCELLED)

    def _interrupt_provider(self) -> None:
        self._provider.cancel()
