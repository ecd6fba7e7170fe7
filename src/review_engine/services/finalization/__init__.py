from .coordinator import FinalizationCoordinator, FinalizationResult, FinalizationStatus
from .scheduler import PhaseScheduler, coding_phase_end, peer_review_end
from .selection import choose_final_submission
from .timers import TimerRegistry

__all__ = [
    "FinalizationCoordinator",
    "FinalizationResult",
    "FinalizationStatus",
    "PhaseScheduler",
    "TimerRegistry",
    "choose_final_submission",
    "coding_phase_end",
    "peer_review_end",
]
