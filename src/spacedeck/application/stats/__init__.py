# Application Stats Package
from .grades import DEFAULT_GRADE_SCALE, GradeScale, best_grade, classify, deck_performance
from .load_monitor import DailyLoadMonitor
from .mastery import MasteryScorer

__all__ = [
    "DEFAULT_GRADE_SCALE",
    "DailyLoadMonitor",
    "GradeScale",
    "MasteryScorer",
    "best_grade",
    "classify",
    "deck_performance",
]
