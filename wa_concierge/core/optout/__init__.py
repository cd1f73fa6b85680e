from .detector import AIOptOutClassifier, OptOutDetector, keyword_fallback
from .manager import OptOutManager, OptOutStateMachine, opt_out_key
from .types import OptOutDetection, OptOutStatus

__all__ = [
    "AIOptOutClassifier",
    "OptOutDetection",
    "OptOutDetector",
    "OptOutManager",
    "OptOutStateMachine",
    "OptOutStatus",
    "keyword_fallback",
    "opt_out_key",
]
