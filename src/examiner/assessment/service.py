"""Assessment service backed by a Republic LLM client."""

from __future__ import annotations

import asyncio
import json
import re
from collections.abc import Sequence
from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from republic import LLM

from examiner.config import Settings
from examiner.errors import ServiceError
from examiner.prompts import EXCHANGE_FORMAT, final_assessment_prompt, transcript_analysis_prompt
from examiner.types import (
    ArtifactRef,
    AssessmentSummary,
    Feedback,
    PictureAnalysis,
    TranscriptAnalysis,
    Turn,
    TurnAnalysis,
    TurnContext,
    TurnOutcome,
)
from examiner.variants import get_variant

JSON_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class _ExchangePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    response: str
    feedback: Feedback | None = None
    points_awarded: int | None = Field(default=None, alias="pointsAwarded")


class _SummaryPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    overall_score: int = Field(alias="overallScore")
    feedback: Feedback | None = None
    strengths: str = ""
    areas_for_improvement: str = Field(default="", alias="areasForImprovement")


class _PicturePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    model_answer: str = Field(default="", alias="modelAnswer")
    user_performance_feedback: str = Field(default="", alias="userPerformanceFeedback")


class _TurnPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    user_turn: str = Field(alias="userTurn")
    feedback: str = ""
    suggestion: str = ""


class _AnalysisPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    picture_description: _PicturePayload | None = Field(default=None, alias="pictureDescriptionAnalysis")
    conversation: list[_TurnPayload] = Field(default_factory=list, alias="conversationAnalysis")


def _strip_fence(text: str) -> str:
    return JSON_FENCE_RE.sub("", text.strip()).strip()


def _load_json(text: str) -> Any:
    try:
        return json.loads(_strip_fence(text))
    except json.JSONDecodeError as exc:
        raise ServiceError(f"reply is not valid JSON: {exc.msg}") from exc


def render_history(history: Sequence[Turn]) -> str:
    return "\n".join(turn.render() for turn in history)


class RepublicAssessmentService:
    """Talk to a chat model for examiner turns, final scoring and picture descriptions."""

    def __init__(self, llm: Any, *, max_tokens: int = 1024, timeout_seconds: float | None = 30) -> None:
        self._llm = llm
        self._max_tokens = max_tokens
        self._timeout_seconds = timeout_seconds

    async def exchange_turn(self, context: TurnContext, candidate_text: str) -> TurnOutcome:
        history = render_history(context.history)
        prompt = f"{history}\ncandidate: {candidate_text}" if history else f"candidate: {candidate_text}"
        system_prompt = f"{context.instruction}\n\n{EXCHANGE_FORMAT}"
        text = await self._chat(prompt, system_prompt=system_prompt, stage="exchange")
        try:
            payload = _ExchangePayload.model_validate(json.loads(_strip_fence(text)))
        except (json.JSONDecodeError, ValidationError):
            # Plain prose is still a usable examiner line.
            logger.debug("assessment.exchange_unstructured phase={}", context.phase)
            return TurnOutcome(examiner_text=text.strip())
        return TurnOutcome(
            examiner_text=payload.response,
            feedback=payload.feedback,
            points_awarded=payload.points_awarded,
        )

    async def final_assessment(self, context: TurnContext, transcript: Sequence[Turn]) -> AssessmentSummary:
        variant = get_variant(context.scenario.variant)
        prompt = final_assessment_prompt(variant.title, variant.phases, render_history(transcript))
        text = await self._chat(prompt, system_prompt=context.instruction, stage="summary")
        try:
            payload = _SummaryPayload.model_validate(_load_json(text))
        except ValidationError as exc:
            raise ServiceError(f"invalid assessment payload: {exc.error_count()} errors") from exc
        return AssessmentSummary(
            overall_score=min(100, max(0, payload.overall_score)),
            feedback=payload.feedback,
            strengths=payload.strengths,
            areas_for_improvement=payload.areas_for_improvement,
        )

    async def transcript_analysis(
        self,
        context: TurnContext,
        transcript: Sequence[Turn],
        artifact: ArtifactRef | None,
    ) -> TranscriptAnalysis:
        prompt = transcript_analysis_prompt(render_history(transcript), artifact)
        text = await self._chat(prompt, system_prompt=context.instruction, stage="analysis")
        try:
            payload = _AnalysisPayload.model_validate(_load_json(text))
        except ValidationError as exc:
            raise ServiceError(f"invalid analysis payload: {exc.error_count()} errors") from exc
        picture = None
        if payload.picture_description is not None:
            picture = PictureAnalysis(
                model_answer=payload.picture_description.model_answer,
                user_performance_feedback=payload.picture_description.user_performance_feedback,
            )
        return TranscriptAnalysis(
            picture_description=picture,
            conversation=[
                TurnAnalysis(user_turn=item.user_turn, feedback=item.feedback, suggestion=item.suggestion)
                for item in payload.conversation
            ],
        )

    async def generate_artifact(self, prompt: str) -> ArtifactRef:
        text = await self._chat(prompt, system_prompt=None, stage="artifact")
        description = text.strip()
        if not description:
            raise ServiceError("empty picture description")
        return ArtifactRef(kind="description", value=description, prompt=prompt)

    async def _chat(self, prompt: str, *, system_prompt: str | None, stage: str) -> str:
        try:
            if self._timeout_seconds is None:
                reply = await self._llm.chat_async(
                    prompt=prompt,
                    system_prompt=system_prompt,
                    max_tokens=self._max_tokens,
                )
            else:
                async with asyncio.timeout(self._timeout_seconds):
                    reply = await self._llm.chat_async(
                        prompt=prompt,
                        system_prompt=system_prompt,
                        max_tokens=self._max_tokens,
                    )
        except TimeoutError as exc:
            raise ServiceError(f"{stage}: no response within {self._timeout_seconds}s") from exc
        except Exception as exc:
            logger.opt(exception=exc).warning("assessment.call_failed stage={}", stage)
            raise ServiceError(f"{stage}: {exc!s}") from exc
        if not isinstance(reply, str):
            reply = str(reply or "")
        return reply


def build_assessment_service(settings: Settings) -> RepublicAssessmentService:
    """Build the Republic-backed assessment service from settings."""

    llm = LLM(settings.require_model(), api_key=settings.api_key, api_base=settings.api_base)
    return RepublicAssessmentService(
        llm,
        max_tokens=settings.max_tokens,
        timeout_seconds=settings.timeout_seconds,
    )
