"""Terminal speech providers and renderer for the examiner CLI."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from prompt_toolkit import PromptSession
from prompt_toolkit.patch_stdout import patch_stdout
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from examiner.hookspecs import hookimpl
from examiner.profile import Profile
from examiner.session.turns import SKIP_TOKEN
from examiner.types import Result, SessionState
from examiner.variants import ExamVariant

SKIP_COMMAND = "/skip"
QUIT_COMMAND = "/quit"


def format_clock(seconds: int) -> str:
    minutes, secs = divmod(max(0, seconds), 60)
    return f"{minutes:02d}:{secs:02d}"


class Renderer:
    """Rich output for a console exam."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def info(self, message: str) -> None:
        self.console.print(message)

    def error(self, message: str) -> None:
        self.console.print(f"[bold red]Error:[/bold red] {message}")

    def welcome(self, variant: ExamVariant, duration_seconds: int) -> None:
        self.console.print(
            Panel(
                f"[bold]{variant.title}[/bold]\n"
                f"Time limit: {format_clock(duration_seconds)}\n"
                f"Type your answer and press Enter. [dim]{SKIP_COMMAND}[/dim] skips a question, "
                f"[dim]{QUIT_COMMAND}[/dim] abandons the test.",
                title="examiner",
            )
        )

    def examiner_line(self, text: str) -> None:
        self.console.print(f"[bold yellow]Examiner:[/bold yellow] {text}")

    def artifact(self, kind: str, value: str) -> None:
        label = "Picture" if kind == "image_url" else "Picture description"
        self.console.print(Panel(value, title=label, border_style="cyan"))

    def result(self, result: Result, points: int) -> None:
        table = Table(title="Final assessment", show_header=False)
        table.add_column("", style="bold")
        table.add_column("")
        table.add_row("Overall score", f"{result.overall_score}/100")
        table.add_row("Points earned", str(points))
        table.add_row("Strengths", result.strengths)
        table.add_row("Areas for improvement", result.areas_for_improvement)
        if result.feedback is not None:
            for name, text in result.feedback.model_dump().items():
                if text:
                    table.add_row(name.capitalize(), text)
        self.console.print(table)

        analysis = result.transcript_analysis
        if analysis.degraded:
            self.console.print("[dim]Turn-by-turn analysis is unavailable for this attempt.[/dim]")
            return
        if analysis.picture_description is not None:
            self.console.print(
                Panel(
                    f"[bold]Model answer:[/bold] {analysis.picture_description.model_answer}\n"
                    f"[bold]Your performance:[/bold] {analysis.picture_description.user_performance_feedback}",
                    title="Picture description",
                )
            )
        for item in analysis.conversation:
            self.console.print(
                Panel(
                    f"[bold]Feedback:[/bold] {item.feedback}\n[bold]Suggestion:[/bold] {item.suggestion}",
                    title=item.user_turn,
                    title_align="left",
                )
            )

    def profile(self, profile: Profile) -> None:
        table = Table(title="Progress", show_header=False)
        table.add_column("", style="bold")
        table.add_column("")
        table.add_row("Points", str(profile.points))
        table.add_row("Mock tests completed", str(profile.mock_tests_completed))
        table.add_row("Average score", f"{profile.average_score:g}")
        table.add_row("Last score", "-" if profile.last_score is None else str(profile.last_score))
        self.console.print(table)


class ConsoleCapture:
    """Read one typed answer per ``listen()`` call."""

    def __init__(self, toolbar: Callable[[], str] | None = None) -> None:
        self._session: PromptSession[str] = PromptSession(bottom_toolbar=toolbar)
        self.quit_requested = False

    async def listen(self) -> str:
        with patch_stdout(raw=True):
            line = await self._session.prompt_async("You: ")
        text = line.strip()
        if text == QUIT_COMMAND:
            self.quit_requested = True
            return ""
        if text == SKIP_COMMAND:
            return SKIP_TOKEN
        return text

    def stop(self) -> None:
        app = self._session.app
        if app.is_running and app.future is not None and not app.future.done():
            app.exit(result=self._session.default_buffer.text)


class ConsolePlayback:
    """Print examiner lines instead of speaking them."""

    def __init__(self, renderer: Renderer) -> None:
        self._renderer = renderer

    async def speak(self, text: str) -> None:
        self._renderer.examiner_line(text)
        await asyncio.sleep(0)

    def cancel(self) -> None:
        return None


class ConsolePlugin:
    """Render session events raised through hooks."""

    def __init__(self, renderer: Renderer) -> None:
        self._renderer = renderer

    @hookimpl
    def phase_changed(self, phase: str) -> None:
        self._renderer.info(f"[dim]-- {phase} --[/dim]")

    @hookimpl
    def status_changed(self, message: str) -> None:
        if message:
            self._renderer.error(message)

    @hookimpl
    def state_changed(self, state: SessionState) -> None:
        if state is SessionState.FINALIZING:
            self._renderer.info("[dim]The test is over. Scoring your answers...[/dim]")
