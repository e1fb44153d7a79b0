# Domain Scheduling Package
from .models import CardState, MemoryState, Rating, ReviewEvent, SchedulingParameters

__all__ = ["CardState", "MemoryState", "Rating", "ReviewEvent", "SchedulingParameters"]
