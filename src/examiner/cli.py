"""Examiner CLI."""

from __future__ import annotations

import asyncio

import typer
from loguru import logger

from examiner.assessment import build_assessment_service
from examiner.config import Settings, get_settings
from examiner.console import ConsoleCapture, ConsolePlayback, ConsolePlugin, Renderer, format_clock
from examiner.errors import ConfigurationError
from examiner.hook_runtime import HookRuntime
from examiner.hookspecs import create_plugin_manager
from examiner.logging_utils import configure_logging
from examiner.profile import ProfilePlugin, ProfileStore
from examiner.providers import AssessmentService
from examiner.session.controller import SessionController
from examiner.session.turns import TurnState
from examiner.types import SessionState
from examiner.variants import ExamVariant, get_variant, list_variants

POLL_INTERVAL_SECONDS = 0.05

app = typer.Typer(name="examiner", help="Timed mock speaking exams in the terminal", add_completion=False)


@app.command("run")
def run(
    variant: str | None = typer.Option(None, "--variant", "-v", help="Exam variant (a2, b1)"),
    duration: int | None = typer.Option(None, "--duration", "-d", help="Time limit in seconds"),
    topic: str = typer.Option("", "--topic", help="Prepared topic title (b1)"),
    points: list[str] | None = typer.Option(None, "--points", help="Prepared topic point, may repeat (b1)"),  # noqa: B008
) -> None:
    """Run one mock exam session."""

    settings = get_settings(variant=variant, duration_seconds=duration)
    configure_logging(profile="console", level=settings.log_level)
    renderer = Renderer()
    try:
        exam = get_variant(settings.variant)
        service = build_assessment_service(settings)
    except ConfigurationError as exc:
        renderer.error(str(exc))
        raise typer.Exit(code=1) from exc

    asyncio.run(
        run_exam(
            settings=settings,
            exam=exam,
            service=service,
            renderer=renderer,
            topic_title=topic,
            topic_points=points or [],
        )
    )


@app.command("variants")
def variants() -> None:
    """List the registered exam variants."""

    for exam in list_variants():
        typer.echo(f"{exam.name}: {exam.title} ({format_clock(exam.duration_seconds)}) phases={' -> '.join(exam.phases)}")


@app.command("profile")
def profile() -> None:
    """Show the stored progress profile."""

    settings = get_settings()
    Renderer().profile(ProfileStore(settings.resolve_home()).load())


async def run_exam(
    *,
    settings: Settings,
    exam: ExamVariant,
    service: AssessmentService,
    renderer: Renderer,
    topic_title: str = "",
    topic_points: list[str] | None = None,
    capture: ConsoleCapture | None = None,
) -> bool:
    """Drive one console session; return whether it produced a result."""

    controller: SessionController | None = None

    def toolbar() -> str:
        if controller is None:
            return ""
        return f" {exam.title} | {controller.phase or '-'} | {format_clock(controller.remaining_seconds)}"

    capture = capture or ConsoleCapture(toolbar=toolbar)
    store = ProfileStore(settings.resolve_home())
    hooks = HookRuntime(create_plugin_manager(ProfilePlugin(store), ConsolePlugin(renderer)))
    controller = SessionController(
        variant=exam,
        service=service,
        capture=capture,
        playback=ConsolePlayback(renderer),
        hooks=hooks,
        duration_seconds=settings.duration_seconds,
        tick_seconds=settings.tick_seconds,
        auto_listen=False,
    )

    renderer.welcome(exam, controller.remaining_seconds)
    await controller.start(topic_title=topic_title, topic_points=topic_points or ())
    artifact_shown = False
    while controller.state is SessionState.RUNNING:
        if not artifact_shown and controller.artifact is not None:
            renderer.artifact(controller.artifact.kind, controller.artifact.value)
            artifact_shown = True
        coordinator = controller.coordinator
        if coordinator is None or coordinator.state is not TurnState.AWAITING_CANDIDATE or coordinator.capture_active:
            await asyncio.sleep(POLL_INTERVAL_SECONDS)
            continue
        await controller.listen().wait()
        if capture.quit_requested:
            logger.info("cli.quit")
            controller.cancel()
            break
        await asyncio.sleep(0)

    result = await controller.wait_until_finished()
    if result is None:
        renderer.info("Test abandoned. No score was recorded.")
        return False
    renderer.result(result, controller.awarded_points)
    renderer.profile(store.load())
    return True
