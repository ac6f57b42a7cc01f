"""
Input Validation Utilities

Phone number normalisation and masking for WhatsApp sender IDs.
"""
import re


class ValidationPatterns:
    """Regex patterns for validation"""

    # International phone (E.164 format)
    PHONE_INTERNATIONAL = re.compile(r"^\+[1-9]\d{6,14}$")


class PhoneNumberValidator:
    """Phone number validation, normalization and masking"""

    @staticmethod
    def normalize(phone: str) -> str:
        """
        Normalize a WhatsApp sender ID to E.164.

        WhatsApp Cloud API delivers ``from`` without the leading ``+``
        (e.g. ``15551230000``); both spellings must map to the same key so
        that block checks and reports group them together.
        """
        cleaned = re.sub(r"[^\d+]", "", phone or "")
        if cleaned and not cleaned.startswith("+"):
            cleaned = "+" + cleaned
        return cleaned

    @staticmethod
    def validate(phone: str) -> bool:
        """True if the number is a valid E.164 number after normalization"""
        if not phone:
            return False
        return bool(ValidationPatterns.PHONE_INTERNATIONAL.match(PhoneNumberValidator.normalize(phone)))

    @staticmethod
    def mask(phone: str | None) -> str:
        """
        Mask phone number for logging (privacy).

        Returns:
            Masked phone number (e.g., +1555123****)
        """
        if not phone or len(phone) < 4:
            return "****"
        return phone[:-4] + "****"
