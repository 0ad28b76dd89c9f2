from pathlib import Path

import pytest

from examiner.config import Settings, get_settings
from examiner.errors import ModelNotConfiguredError


def test_settings_read_prefixed_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("EXAMINER_VARIANT", "b1")
    monkeypatch.setenv("EXAMINER_TICK_SECONDS", "0.5")
    monkeypatch.setenv("EXAMINER_AUTO_LISTEN", "true")

    settings = get_settings()

    assert settings.variant == "b1"
    assert settings.tick_seconds == 0.5
    assert settings.auto_listen is True


def test_explicit_overrides_win_and_none_is_ignored(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("EXAMINER_VARIANT", "b1")

    assert get_settings(variant="a2").variant == "a2"
    assert get_settings(variant=None, duration_seconds=None).variant == "b1"
    assert get_settings(duration_seconds=60).duration_seconds == 60


def test_resolve_home_expands_user(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("HOME", str(tmp_path))

    assert Settings(home=Path("~/.examiner")).resolve_home() == (tmp_path / ".examiner").resolve()


def test_require_model_rejects_blank_model() -> None:
    with pytest.raises(ModelNotConfiguredError):
        Settings(model="  ").require_model()
    assert Settings(model=" openai:gpt-4o-mini ").require_model() == "openai:gpt-4o-mini"
