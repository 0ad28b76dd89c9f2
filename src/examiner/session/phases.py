"""Phase detection from examiner wording."""

from __future__ import annotations

from dataclasses import dataclass

from examiner.variants import ExamVariant

_APOSTROPHES = str.maketrans({"’": "'", "‘": "'", "ʼ": "'"})


@dataclass(frozen=True)
class Detection:
    """Outcome of matching one examiner line."""

    next_phase: str | None = None
    ends_session: bool = False


NO_DETECTION = Detection()


def normalize(text: str) -> str:
    return " ".join(text.translate(_APOSTROPHES).split()).casefold()


def detect(variant: ExamVariant, examiner_text: object, current_phase: str) -> Detection:
    """Map one examiner line to a phase transition and/or the end of the session.

    Only rules targeting the phase directly after ``current_phase`` are
    evaluated, in declaration order; the first match wins. The end phrase
    is an exact case-insensitive comparison of the normalized line.
    """
    if not isinstance(examiner_text, str) or not examiner_text.strip():
        return NO_DETECTION

    normalized = normalize(examiner_text)
    ends_session = normalized == normalize(variant.end_phrase)
    next_phase: str | None = None
    for rule in variant.rules_for(current_phase):
        if rule.matches(normalized):
            next_phase = rule.target
            break
    if next_phase is None and not ends_session:
        return NO_DETECTION
    return Detection(next_phase=next_phase, ends_session=ends_session)
