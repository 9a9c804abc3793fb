"""Utility functions for sanitization, marks handling and result grading."""

import bleach


def sanitize_feedback(text: str) -> str:
    """Sanitize grader feedback text.

    Strips all HTML to plain text.
    """
    sanitized = bleach.clean(text, tags=[], strip=True)
    return sanitized.strip()


def clamp_marks(marks: float, max_marks: int) -> int:
    """Clamp awarded marks into ``[0, max_marks]``.

    Marks are whole numbers; a fractional value is rejected, not rounded.

    Raises:
        ValueError: If marks is not a whole number
    """
    try:
        value = float(marks)
    except (TypeError, ValueError):
        raise ValueError(f"Marks {marks!r} is not a number")
    if value != value:  # NaN
        raise ValueError("Marks must be a number")
    if not value.is_integer():
        raise ValueError(f"Marks {marks!r} must be a whole number")
    return int(min(max(value, 0), max_marks))


def percentage(total_score: int, max_score: int) -> float:
    if not max_score:
        return 0.0
    return round(total_score / max_score * 100, 2)


def letter_grade(pct: float) -> str:
    """Letter grade for a percentage score."""
    if pct >= 90:
        return "A"
    if pct >= 80:
        return "B"
    if pct >= 70:
        return "C"
    if pct >= 60:
        return "D"
    return "F"
