"""
Input validation functions for school-sync.

Provides validation for user names, lessons, scores and the API base URL
so that bad input is rejected before anything is cached, queued, or sent.
"""

from urllib.parse import urlparse

MAX_NAME_LENGTH = 200
MAX_LESSON_LENGTH = 200
MIN_SCORE = 0
MAX_SCORE = 100


# ---------------------------------------------------------------------------
# Error message formatting helpers
# ---------------------------------------------------------------------------


def format_validation_error(field_name: str, reason: str) -> str:
    """
    Generate consistent error message for validation failures.

    Args:
        field_name: Human-readable field name (e.g., "Name")
        reason: Description of validation failure (e.g., "cannot be empty")

    Returns:
        Formatted error message string
    """
    return f"{field_name} {reason}"


def validate_user_name(name: str) -> tuple[bool, str]:
    """
    Validate a user name.

    Returns:
        Tuple of (is_valid, error_message).
        Returns (True, "") if valid, (False, reason) if invalid.

    Validation rules:
        - Cannot be empty or whitespace-only
        - Cannot exceed MAX_NAME_LENGTH characters once stripped
    """
    if not name or not name.strip():
        return (False, format_validation_error("Name", "is required"))

    if len(name.strip()) > MAX_NAME_LENGTH:
        return (
            False,
            format_validation_error(
                "Name", f"cannot exceed {MAX_NAME_LENGTH} characters"
            ),
        )

    return (True, "")


def validate_lesson(lesson: str) -> tuple[bool, str]:
    """Validate a lesson label. Same rules as user names."""
    if not lesson or not lesson.strip():
        return (False, format_validation_error("Lesson", "is required"))

    if len(lesson.strip()) > MAX_LESSON_LENGTH:
        return (
            False,
            format_validation_error(
                "Lesson", f"cannot exceed {MAX_LESSON_LENGTH} characters"
            ),
        )

    return (True, "")


def validate_score(score: object) -> tuple[bool, str]:
    """
    Validate a progress score.

    Accepts ints only (``bool`` is rejected even though it subclasses int).
    The score must lie in ``MIN_SCORE..MAX_SCORE`` inclusive.
    """
    if isinstance(score, bool) or not isinstance(score, int):
        return (
            False,
            format_validation_error("Score", "must be a whole number"),
        )

    if not (MIN_SCORE <= score <= MAX_SCORE):
        return (
            False,
            format_validation_error(
                "Score", f"must be between {MIN_SCORE} and {MAX_SCORE}"
            ),
        )

    return (True, "")


def validate_api_url(url: str) -> tuple[bool, str]:
    """
    Validate the remote API base URL.

    Validation rules:
        - Cannot be empty
        - Must start with http:// or https://
        - Must include a hostname
    """
    value = (url or "").strip()
    if not value:
        return (False, format_validation_error("URL", "is required"))

    if not value.startswith(("http://", "https://")):
        return (
            False,
            format_validation_error(
                "URL", "must start with http:// or https://"
            ),
        )

    if not urlparse(value).hostname:
        return (
            False,
            format_validation_error("URL", "must include a hostname"),
        )

    return (True, "")
