"""
Input Validation Utilities

Provides validation for inbound SMS traffic:
- Ethiopian mobile number validation and normalization
- Phone masking for logs
- Message text sanitization
"""
import re

from sms_bot.core.config import settings


class ValidationPatterns:
    """Regex patterns for validation"""

    # Ethiopian mobile numbers in local form: 09XXXXXXXX
    PHONE_ETHIOPIA_LOCAL = re.compile(r"^09\d{8}$")

    # Anything that is not a word character, whitespace, - . , or Ethiopic script
    UNSAFE_SMS_CHARS = re.compile(r"[^\w\s\-.,\u1200-\u137F]")

    ETHIOPIC = re.compile(r"[\u1200-\u137F]")


class PhoneNumberValidator:
    """Phone number validation and normalization"""

    @staticmethod
    def normalize(phone: str) -> str:
        """
        Normalize an Ethiopian phone number to the local 09XXXXXXXX form.

        Strips spaces, dashes and parentheses, and replaces a +251 / 251
        country prefix with a leading 0.
        """
        if not phone:
            return ""
        cleaned = re.sub(r"[\s\-()]", "", phone)
        if cleaned.startswith("+251"):
            cleaned = "0" + cleaned[4:]
        elif cleaned.startswith("251"):
            cleaned = "0" + cleaned[3:]
        return cleaned

    @staticmethod
    def validate(phone: str) -> bool:
        """Check the number is an Ethiopian mobile number after normalization"""
        if not phone:
            return False
        return bool(ValidationPatterns.PHONE_ETHIOPIA_LOCAL.match(PhoneNumberValidator.normalize(phone)))

    @staticmethod
    def mask(phone: str) -> str:
        """
        Mask phone number for logging (privacy).

        Returns:
            Masked phone number (e.g., 0911****78)
        """
        if not phone:
            return "****"
        if len(phone) < 6:
            return "*" * len(phone)
        return phone[:4] + "*" * (len(phone) - 6) + phone[-2:]


class TextSanitizer:
    """Sanitize free-text SMS input"""

    @staticmethod
    def sanitize_sms(text: str, max_length: int | None = None) -> str:
        """
        Strip characters outside the SMS command alphabet and cap the length.

        Keeps letters, digits, whitespace, ``-``, ``.``, ``,`` and Ethiopic
        script; everything else (quotes, angle brackets, emoji, control
        characters) is removed.
        """
        if not text:
            return ""
        limit = max_length or settings.SMS_MAX_INPUT_LENGTH
        cleaned = ValidationPatterns.UNSAFE_SMS_CHARS.sub("", text).strip()
        return cleaned[:limit]

    @staticmethod
    def contains_ethiopic(text: str) -> bool:
        return bool(ValidationPatterns.ETHIOPIC.search(text or ""))
