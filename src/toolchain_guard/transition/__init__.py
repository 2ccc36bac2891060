from .bisector import BisectionRange, BisectionResult, Bisector
from .guard import GuardDecision, TransitionRequest, check_downgrade, evaluate

__all__ = [
    "BisectionRange",
    "BisectionResult",
    "Bisector",
    "GuardDecision",
    "TransitionRequest",
    "check_downgrade",
    "evaluate",
]
