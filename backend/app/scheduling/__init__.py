"""Time-windowed scheduling for league purchase windows and background jobs."""

from .windows import (
    Phase,
    WindowEvaluator,
    current_cycle_date,
    evaluator_for,
    is_window_open,
)

__all__ = [
    "Phase",
    "WindowEvaluator",
    "current_cycle_date",
    "evaluator_for",
    "is_window_open",
]
