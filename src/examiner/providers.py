"""Collaborator contracts consumed by the session engine."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from examiner.types import ArtifactRef, AssessmentSummary, TranscriptAnalysis, Turn, TurnContext, TurnOutcome


class AssessmentService(Protocol):
    """Produces examiner text and scoring. Every request may raise ``ServiceError``."""

    async def exchange_turn(self, context: TurnContext, candidate_text: str) -> TurnOutcome: ...

    async def final_assessment(self, context: TurnContext, transcript: Sequence[Turn]) -> AssessmentSummary: ...

    async def transcript_analysis(
        self,
        context: TurnContext,
        transcript: Sequence[Turn],
        artifact: ArtifactRef | None,
    ) -> TranscriptAnalysis: ...

    async def generate_artifact(self, prompt: str) -> ArtifactRef: ...


class SpeechCaptureProvider(Protocol):
    """Listens for one utterance per ``listen()`` call.

    ``listen()`` returns the transcript or raises ``CaptureError``;
    ``stop()`` makes a pending ``listen()`` return what was captured so far.
    """

    async def listen(self) -> str: ...

    def stop(self) -> None: ...


class SpeechPlaybackProvider(Protocol):
    """Speaks one line per ``speak()`` call.

    ``speak()`` returns once the text was spoken and may raise
    ``PlaybackInterrupted``; ``cancel()`` stops speech immediately.
    """

    async def speak(self, text: str) -> None: ...

    def cancel(self) -> None: ...
