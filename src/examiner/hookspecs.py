"""Pluggy hook namespace and host hook specifications."""

from __future__ import annotations

import pluggy

from examiner.types import Result, SessionState

EXAMINER_HOOK_NAMESPACE = "examiner"
hookspec = pluggy.HookspecMarker(EXAMINER_HOOK_NAMESPACE)
hookimpl = pluggy.HookimplMarker(EXAMINER_HOOK_NAMESPACE)


class ExaminerHookSpecs:
    """Hook contract for hosts observing a session."""

    @hookspec
    def session_completed(self, session_id: str, points_awarded: int, overall_score: int, result: Result) -> None:
        """Relay earned points and the final score to the profile collaborator."""

    @hookspec
    def points_awarded(self, session_id: str, points: int) -> None:
        """Observe points awarded for one exchange."""

    @hookspec
    def state_changed(self, session_id: str, state: SessionState) -> None:
        """Observe a session state transition."""

    @hookspec
    def phase_changed(self, session_id: str, phase: str) -> None:
        """Observe the session moving into the next exam phase."""

    @hookspec
    def status_changed(self, session_id: str, message: str) -> None:
        """Observe a transient status message such as a capture error."""

    @hookspec
    def on_error(self, stage: str, error: Exception) -> None:
        """Observe failures isolated inside hook implementations."""


def create_plugin_manager(*plugins: object) -> pluggy.PluginManager:
    manager = pluggy.PluginManager(EXAMINER_HOOK_NAMESPACE)
    manager.add_hookspecs(ExaminerHookSpecs)
    for plugin in plugins:
        manager.register(plugin)
    return manager
