import re
from typing import Optional

from bookfinder.catalog import normalize_email
from bookfinder.errors import ValidationError


class EmailValidator:
    """Lenient email checks matching what the sign-up and profile forms accept."""

    _PATTERN = re.compile(r"^[^@\s]+@[^@\s]+$")

    @staticmethod
    def is_valid_email(email: Optional[str]) -> bool:
        if not email:
            return False
        return bool(EmailValidator._PATTERN.match(normalize_email(email)))

    @staticmethod
    def require(email: Optional[str]) -> str:
        """Return the normalized email or raise ``ValidationError``."""
        if not EmailValidator.is_valid_email(email):
            raise ValidationError("Please enter a valid email.")
        return normalize_email(email)


class TextValidator:
    """Basic checks for names and passwords."""

    @staticmethod
    def require_name(name: Optional[str]) -> str:
        if name is None or not name.strip():
            raise ValidationError("Name cannot be empty.")
        return name.strip()

    @staticmethod
    def require_password(password: Optional[str]) -> str:
        # Passwords are not trimmed; whitespace is significant
        if not password:
            raise ValidationError("Password cannot be empty.")
        return password

    @staticmethod
    def require_matching(password: str, confirm_password: Optional[str]) -> None:
        if password != confirm_password:
            raise ValidationError("Passwords do not match.")

