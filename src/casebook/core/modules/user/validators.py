import re

from casebook.errors import ValidationError

USERNAME_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9._-]{1,31}$")
MIN_PASSWORD_LENGTH = 8


def validate_username(username: str) -> None:
    """Validate username: 2-32 chars, letters, digits, dot, underscore, hyphen, starting alphanumeric.

    Raises:
        ValidationError: If the username doesn't match
    """
    if not USERNAME_RE.fullmatch(username):
        raise ValidationError(
            "Username must be 2-32 characters of letters, digits, '.', '_' or '-' and start with a letter or digit"
        )


def validate_password(password: str) -> None:
    """Validate password meets requirements.

    Requirements:
    - No whitespace characters
    - Minimum length of 8 characters

    Raises:
        ValidationError: If password doesn't meet requirements
    """
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")

    if any(char.isspace() for char in password):
        raise ValidationError("Password cannot contain whitespace characters")
