"""examiner - timed mock speaking exams driven by a conversational examiner."""

from examiner.session.controller import SessionController
from examiner.types import Result, SessionState, Turn
from examiner.variants import A2_VARIANT, B1_VARIANT, get_variant

__version__ = "0.1.0"

__all__ = ["A2_VARIANT", "B1_VARIANT", "Result", "SessionController", "SessionState", "Turn", "get_variant"]
