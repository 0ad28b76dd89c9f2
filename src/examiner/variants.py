"""Exam variant registry: phases, transition rules and scoring policy."""

from __future__ import annotations

import random
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from examiner.errors import UnknownVariantError
from examiner.prompts import (
    A2_CONVERSATION_AREAS,
    END_OF_TEST_PHRASE,
    OPENING_PROMPT,
    PICTURE_PROMPTS,
    a2_instruction,
    b1_instruction,
)
from examiner.types import Scenario


@dataclass(frozen=True)
class PhaseRule:
    """Substring rule that moves the session into ``target``."""

    target: str
    phrases: tuple[str, ...]

    def matches(self, normalized_text: str) -> bool:
        return any(phrase.casefold() in normalized_text for phrase in self.phrases)


@dataclass(frozen=True)
class ExamVariant:
    name: str
    title: str
    phases: tuple[str, ...]
    rules: tuple[PhaseRule, ...]
    duration_seconds: int
    instruction: Callable[[Scenario], str]
    completion_points: Callable[[int], int]
    end_phrase: str = END_OF_TEST_PHRASE
    opening_prompt: str = OPENING_PROMPT
    subject_pool: tuple[str, ...] = ()
    picture_prompts: tuple[str, ...] = field(default=())

    @property
    def initial_phase(self) -> str:
        return self.phases[0]

    @property
    def uses_artifact(self) -> bool:
        return bool(self.picture_prompts)

    def index(self, phase: str) -> int:
        return self.phases.index(phase)

    def next_phase(self, phase: str) -> str | None:
        if phase not in self.phases:
            return None
        position = self.phases.index(phase) + 1
        if position >= len(self.phases):
            return None
        return self.phases[position]

    def rules_for(self, phase: str) -> tuple[PhaseRule, ...]:
        """Rules reachable from ``phase``: only the directly following phase."""
        following = self.next_phase(phase)
        if following is None:
            return ()
        return tuple(rule for rule in self.rules if rule.target == following)

    def prepare_scenario(
        self,
        *,
        topic_title: str = "",
        topic_points: Sequence[str] = (),
        rng: random.Random | None = None,
    ) -> Scenario:
        subjects: tuple[str, ...] = ()
        if self.subject_pool:
            subjects = tuple((rng or random).sample(self.subject_pool, 2))
        points = tuple(point.strip() for point in topic_points if point.strip())
        return Scenario(variant=self.name, topic_title=topic_title.strip(), topic_points=points, subjects=subjects)

    def pick_picture_prompt(self, rng: random.Random | None = None) -> str | None:
        if not self.picture_prompts:
            return None
        return (rng or random).choice(self.picture_prompts)


def a2_completion_points(overall_score: int) -> int:
    return round(overall_score * 1.5)


def b1_outcome(overall_score: int) -> str:
    if overall_score < 50:
        return "Fail"
    if overall_score < 80:
        return "Pass"
    return "Distinction"


def b1_completion_points(overall_score: int) -> int:
    return {"Fail": 50, "Pass": 100, "Distinction": 150}[b1_outcome(overall_score)]


A2_VARIANT = ExamVariant(
    name="a2",
    title="A2 speaking test",
    phases=("intro", "picture", "topic1", "topic2"),
    rules=(
        PhaseRule("picture", ("we are going to look at a picture", "let's look at a picture")),
        PhaseRule("topic1", ("let's talk about something else", "let's talk about something different")),
        PhaseRule("topic2", ("ask you for some directions", "now let's talk about")),
    ),
    duration_seconds=420,
    instruction=a2_instruction,
    completion_points=a2_completion_points,
    subject_pool=A2_CONVERSATION_AREAS,
    picture_prompts=PICTURE_PROMPTS,
)

B1_VARIANT = ExamVariant(
    name="b1",
    title="B1 (GESE Grade 5) speaking test",
    phases=("topic", "conversation"),
    rules=(PhaseRule("conversation", ("let's move on to the conversation phase",)),),
    duration_seconds=600,
    instruction=b1_instruction,
    completion_points=b1_completion_points,
)

_VARIANTS: dict[str, ExamVariant] = {}


def register_variant(variant: ExamVariant) -> None:
    _VARIANTS[variant.name.casefold()] = variant


def get_variant(name: str) -> ExamVariant:
    variant = _VARIANTS.get(name.strip().casefold())
    if variant is None:
        known = ", ".join(sorted(_VARIANTS))
        raise UnknownVariantError(f"unknown exam variant '{name}' (known: {known})")
    return variant


def list_variants() -> list[ExamVariant]:
    return [_VARIANTS[name] for name in sorted(_VARIANTS)]


register_variant(A2_VARIANT)
register_variant(B1_VARIANT)
