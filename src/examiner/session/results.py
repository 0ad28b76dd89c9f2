"""Final scoring fan-out with per-branch failure isolation."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Sequence

from loguru import logger

from examiner.errors import ServiceError
from examiner.providers import AssessmentService
from examiner.types import ArtifactRef, AssessmentSummary, Result, TranscriptAnalysis, Turn, TurnContext

DEGRADED_SUMMARY = AssessmentSummary(
    overall_score=0,
    strengths="There was an error generating the assessment.",
    areas_for_improvement="Please try the mock test again.",
    degraded=True,
)
DEGRADED_ANALYSIS = TranscriptAnalysis(degraded=True)


class ResultsAggregator:
    """Build the session ``Result`` exactly once.

    The holistic summary and the turn-by-turn analysis are requested
    concurrently. A failed branch is replaced by a degraded placeholder so
    the other branch is still reported.
    """

    def __init__(self, service: AssessmentService, context: TurnContext) -> None:
        self._service = service
        self._context = context
        self._task: asyncio.Task[Result] | None = None

    @property
    def result(self) -> Result | None:
        if self._task is None or not self._task.done() or self._task.cancelled():
            return None
        return self._task.result()

    async def aggregate(self, transcript: Sequence[Turn], artifact: ArtifactRef | None = None) -> Result:
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(
                self._compute(tuple(transcript), artifact),
                name="examiner.results",
            )
        return await asyncio.shield(self._task)

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def _compute(self, transcript: tuple[Turn, ...], artifact: ArtifactRef | None) -> Result:
        summary, analysis = await asyncio.gather(
            self._isolated(
                "summary",
                self._service.final_assessment(self._context, transcript),
                DEGRADED_SUMMARY,
            ),
            self._isolated(
                "analysis",
                self._service.transcript_analysis(self._context, transcript, artifact),
                DEGRADED_ANALYSIS,
            ),
        )
        logger.info(
            "results.ready session={} score={} summary_degraded={} analysis_degraded={}",
            self._context.session_id,
            summary.overall_score,
            summary.degraded,
            analysis.degraded,
        )
        return Result(
            overall_score=summary.overall_score,
            strengths=summary.strengths,
            areas_for_improvement=summary.areas_for_improvement,
            feedback=summary.feedback,
            transcript_analysis=analysis,
            summary_degraded=summary.degraded,
        )

    async def _isolated[T](self, branch: str, request: Awaitable[T], placeholder: T) -> T:
        try:
            return await request
        except ServiceError as exc:
            logger.warning("results.branch_failed branch={} error={!s}", branch, exc)
        except Exception:
            # External boundary: a failed branch degrades to its placeholder.
            logger.exception("results.branch_crashed branch={}", branch)
        return placeholder
