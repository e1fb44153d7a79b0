# Domain Stats Package
from .models import DeckScore, Grade, LoadWarning, ScoreWindow, WindowStats

__all__ = ["DeckScore", "Grade", "LoadWarning", "ScoreWindow", "WindowStats"]
