"""
Suspicious Message Patterns — טבלת חוקים לזיהוי תוכן חשוד

החוקים נבדקים לפי הסדר; ההתאמה הראשונה קובעת. זיהוי בלבד — ההחלטה
אם לחסום שייכת לקורא.
"""
import re
from dataclasses import dataclass
from typing import Optional

from whatsapp_guard.db.models.security_event import SecuritySeverity


@dataclass(frozen=True)
class SuspiciousPatternRule:
    """חוק זיהוי: שם, ביטוי רגולרי, קטגוריה וחומרה"""
    name: str
    pattern: re.Pattern
    category: str
    severity: SecuritySeverity = SecuritySeverity.HIGH

    def matches(self, message: str) -> bool:
        return self.pattern.search(message) is not None


def _rule(name: str, regex: str, category: str) -> SuspiciousPatternRule:
    return SuspiciousPatternRule(
        name=name,
        pattern=re.compile(regex, re.IGNORECASE),
        category=category,
    )


SUSPICIOUS_PATTERN_RULES: tuple[SuspiciousPatternRule, ...] = (
    _rule(
        "password_solicitation",
        r"\b(password|passwd|pwd)\b.*\b(send|tell|give|share)\b",
        "credentials",
    ),
    _rule(
        "secret_solicitation",
        r"\b(api[_\s]?key|token|secret)\b.*\b(send|tell|give|share)\b",
        "credentials",
    ),
    _rule(
        "credit_card_digits",
        r"\b(credit[_\s]?card|cc|cvv)\b.*\b\d{4}",
        "financial",
    ),
    _rule(
        "ssn_digits",
        r"\b(social[_\s]?security|ssn)\b.*\b\d{3}",
        "identity",
    ),
    # דומיינים חינמיים שנפוצים בפישינג
    _rule(
        "suspicious_free_tld_url",
        r"\bhttps?://[^\s]+\.(tk|ml|ga|cf)",
        "url",
    ),
)


def first_match(
    message: str,
    rules: tuple[SuspiciousPatternRule, ...] = SUSPICIOUS_PATTERN_RULES,
) -> Optional[SuspiciousPatternRule]:
    """החוק הראשון שתואם להודעה, או None"""
    if not message:
        return None
    for rule in rules:
        if rule.matches(message):
            return rule
    return None
