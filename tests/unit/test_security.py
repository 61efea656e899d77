# tests/unit/test_security.py

"""
Tests for identifier validation in src/loadout_publisher/security.py.

Identifiers are interpolated into `{root}/{userId}/{loadoutId}/`, so anything
that is not a single plain path segment must be rejected.
"""

import pytest

from loadout_publisher.exceptions import InvalidIdentifierError
from loadout_publisher.security import MAX_IDENTIFIER_BYTES, validate_path_segment


@pytest.mark.parametrize(
    "value",
    [
        "user-1",
        "3f2a9c1e-8b7d-4e6f-a5b4-c3d2e1f0a9b8",
        "us-east-1:3f2a9c1e-8b7d-4e6f-a5b4-c3d2e1f0a9b8",
        "loadout_2024.v2",
        "my..loadout",
        "Ünïcödé-kit",
        "🚀" * (MAX_IDENTIFIER_BYTES // 4),
    ],
)
def test_valid_identifiers_are_returned_unchanged(value):
    assert validate_path_segment(value, "loadoutId") == value


@pytest.mark.parametrize(
    "value, error_code",
    [
        ("", "INVALID_IDENTIFIER_LENGTH"),
        ("a" * (MAX_IDENTIFIER_BYTES + 1), "INVALID_IDENTIFIER_LENGTH"),
        ("🚀" * (MAX_IDENTIFIER_BYTES // 4 + 1), "INVALID_IDENTIFIER_LENGTH"),
        (" user-1", "INVALID_IDENTIFIER"),
        ("user-1\t", "INVALID_IDENTIFIER"),
        ("user\x00-1", "INVALID_IDENTIFIER"),
        ("user\u200b-1", "INVALID_IDENTIFIER"),
        ("user\u202e-1", "INVALID_IDENTIFIER"),
        ("user/other", "UNSAFE_IDENTIFIER"),
        ("../other-user", "UNSAFE_IDENTIFIER"),
        ("user\\other", "UNSAFE_IDENTIFIER"),
        ("user\uff0fother", "UNSAFE_IDENTIFIER"),
        ("..", "UNSAFE_IDENTIFIER"),
        (".", "UNSAFE_IDENTIFIER"),
        ("user%2Fother", "UNSAFE_IDENTIFIER"),
        ("user%252Fother", "UNSAFE_IDENTIFIER"),
        ("%2e%2e", "UNSAFE_IDENTIFIER"),
    ],
)
def test_unsafe_identifiers_are_rejected(value, error_code):
    with pytest.raises(InvalidIdentifierError) as exc_info:
        validate_path_segment(value, "userSub")

    assert exc_info.value.error_code == error_code
    assert exc_info.value.context["field"] == "userSub"


def test_non_string_identifier_is_rejected():
    with pytest.raises(InvalidIdentifierError) as exc_info:
        validate_path_segment(1234, "loadoutId")  # type: ignore[arg-type]

    assert exc_info.value.error_code == "INVALID_IDENTIFIER_TYPE"
