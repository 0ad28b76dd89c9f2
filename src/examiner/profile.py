"""Persistent progress profile fed by completed sessions."""

from __future__ import annotations

from pathlib import Path

from loguru import logger
from pydantic import BaseModel, ValidationError

from examiner.hookspecs import hookimpl
from examiner.types import Result

PROFILE_FILE = "profile.json"


class Profile(BaseModel):
    points: int = 0
    mock_tests_completed: int = 0
    average_score: float = 0.0
    last_score: int | None = None

    def record(self, points_awarded: int, overall_score: int) -> Profile:
        completed = self.mock_tests_completed + 1
        average = (self.average_score * self.mock_tests_completed + overall_score) / completed
        return Profile(
            points=self.points + max(0, points_awarded),
            mock_tests_completed=completed,
            average_score=round(average, 2),
            last_score=overall_score,
        )


class ProfileStore:
    """JSON file holding the learner's accumulated progress."""

    def __init__(self, home: Path) -> None:
        self._path = home / PROFILE_FILE

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Profile:
        if not self._path.is_file():
            return Profile()
        try:
            return Profile.model_validate_json(self._path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as exc:
            logger.warning("profile.load_failed path={} error={!s}", self._path, exc)
            return Profile()

    def save(self, profile: Profile) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".json.tmp")
        tmp_path.write_text(profile.model_dump_json(indent=2), encoding="utf-8")
        tmp_path.replace(self._path)

    def record(self, points_awarded: int, overall_score: int) -> Profile:
        profile = self.load().record(points_awarded, overall_score)
        self.save(profile)
        return profile


class ProfilePlugin:
    """Hook implementation that credits points when a session completes."""

    def __init__(self, store: ProfileStore) -> None:
        self.store = store

    @hookimpl
    def session_completed(self, session_id: str, points_awarded: int, overall_score: int, result: Result) -> None:
        profile = self.store.record(points_awarded, overall_score)
        logger.info(
            "profile.updated session={} points={} total={} degraded={}",
            session_id,
            points_awarded,
            profile.points,
            result.degraded,
        )
