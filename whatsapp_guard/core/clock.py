"""Time utilities for consistent timestamp handling."""
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current UTC time as a naive datetime.

    כל עמודות ה-DateTime בסכמה הן naive-UTC; נקודת כניסה אחת לשעון
    מאפשרת לבדיקות להזיז את הזמן (חלונות מכסה, חסימה ל-24 שעות).
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)
