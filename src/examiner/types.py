"""Session data model shared by every engine component."""

from __future__ import annotations

import time
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class Speaker(StrEnum):
    CANDIDATE = "candidate"
    EXAMINER = "examiner"


class SessionState(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    FINALIZING = "finalizing"
    RESULTS = "results"

    @property
    def rank(self) -> int:
        return _STATE_ORDER.index(self)


_STATE_ORDER = (SessionState.IDLE, SessionState.RUNNING, SessionState.FINALIZING, SessionState.RESULTS)


class CaptureErrorKind(StrEnum):
    PERMISSION_DENIED = "permission-denied"
    NO_SPEECH_DETECTED = "no-speech"
    NETWORK = "network"
    OTHER = "other"


@dataclass(frozen=True)
class Turn:
    """One utterance recorded in the transcript."""

    speaker: Speaker
    text: str
    timestamp: float = field(default_factory=time.time)

    def render(self) -> str:
        return f"{self.speaker.value}: {self.text}"


class Transcript:
    """Append-only ordered sequence of turns."""

    def __init__(self) -> None:
        self._turns: list[Turn] = []

    def append(self, turn: Turn) -> None:
        self._turns.append(turn)

    def snapshot(self) -> tuple[Turn, ...]:
        return tuple(self._turns)

    def render(self) -> str:
        return "\n".join(turn.render() for turn in self._turns)

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[Turn]:
        return iter(tuple(self._turns))

    def __getitem__(self, index: int) -> Turn:
        return self._turns[index]


@dataclass(frozen=True)
class Scenario:
    """Per-attempt exam context handed to the assessment service."""

    variant: str
    topic_title: str = ""
    topic_points: tuple[str, ...] = ()
    subjects: tuple[str, ...] = ()


@dataclass(frozen=True)
class TurnContext:
    """Read-only context for one exchange with the assessment service."""

    session_id: str
    phase: str
    scenario: Scenario
    instruction: str
    history: tuple[Turn, ...] = ()


class Feedback(BaseModel):
    grammar: str = ""
    vocabulary: str = ""
    fluency: str = ""
    pronunciation: str = ""


class TurnOutcome(BaseModel):
    """Structured reply for one exchange."""

    model_config = ConfigDict(frozen=True)

    examiner_text: str
    feedback: Feedback | None = None
    points_awarded: int | None = None


class AssessmentSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    overall_score: int = Field(default=0, ge=0, le=100)
    feedback: Feedback | None = None
    strengths: str = ""
    areas_for_improvement: str = ""
    degraded: bool = False


class PictureAnalysis(BaseModel):
    model_answer: str = ""
    user_performance_feedback: str = ""


class TurnAnalysis(BaseModel):
    user_turn: str
    feedback: str = ""
    suggestion: str = ""


class TranscriptAnalysis(BaseModel):
    model_config = ConfigDict(frozen=True)

    picture_description: PictureAnalysis | None = None
    conversation: list[TurnAnalysis] = Field(default_factory=list)
    degraded: bool = False


class ArtifactRef(BaseModel):
    """Reference to an exam artifact such as the picture for description."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["image_url", "description"]
    value: str
    prompt: str = ""


class Result(BaseModel):
    """Final, read-only outcome of one session."""

    model_config = ConfigDict(frozen=True)

    overall_score: int
    strengths: str
    areas_for_improvement: str
    transcript_analysis: TranscriptAnalysis
    feedback: Feedback | None = None
    summary_degraded: bool = False

    @property
    def degraded(self) -> bool:
        return self.summary_degraded or self.transcript_analysis.degraded


@dataclass
class Session:
    """Live state of one attempt. Mutated only by the session controller."""

    id: str
    variant: str
    phase: str
    remaining_seconds: int
    state: SessionState = SessionState.IDLE
    started_at: float = field(default_factory=time.time)
