"""Input validators shared by schemas and services."""
import re

from authgate.core.constants import RESERVED_USERNAMES

USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{3,30}$")


def validate_username(value: str) -> str:
    value = value.strip()
    if not USERNAME_PATTERN.match(value):
        raise ValueError("Username must be 3-30 characters: letters, digits, '_' or '-'")
    if value.lower() in RESERVED_USERNAMES:
        raise ValueError("This username is reserved")
    return value


def password_problems(password: str) -> list[str]:
    """Return the policy rules a password breaks; empty when it is acceptable."""
    problems = []
    if len(password) < 8:
        problems.append("at least 8 characters")
    if not re.search(r"[a-z]", password):
        problems.append("a lowercase letter")
    if not re.search(r"[A-Z]", password):
        problems.append("an uppercase letter")
    if not re.search(r"\d", password):
        problems.append("a digit")
    if not re.search(r"[^a-zA-Z0-9]", password):
        problems.append("a special character")
    return problems


def validate_password(value: str) -> str:
    problems = password_problems(value)
    if problems:
        raise ValueError("Password must contain " + ", ".join(problems))
    return value
