from examiner.session.clock import Clock
from examiner.session.controller import SessionController
from examiner.session.gates import CaptureGate, CaptureResult, GateHandle, PlaybackGate, PlaybackResult, SpeechGuard
from examiner.session.phases import Detection, detect
from examiner.session.results import ResultsAggregator
from examiner.session.turns import TurnCoordinator, TurnState

__all__ = [
    "CaptureGate",
    "CaptureResult",
    "Clock",
    "Detection",
    "GateHandle",
    "PlaybackGate",
    "PlaybackResult",
    "ResultsAggregator",
    "SessionController",
    "SpeechGuard",
    "TurnCoordinator",
    "TurnState",
    "detect",
]
