"""
Security utilities for the Loadout Publisher service.

User and loadout identifiers arrive as query parameters and are interpolated
into the storage prefix `{root}/{userId}/{loadoutId}/`. An identifier that is
not a single, plain path segment could widen the listing to another user's
objects, so every identifier is validated before any storage call.

The checks block:
- Path separators and traversal segments (`/`, `\\`, `..`, `.`)
- URL-encoded traversal (`%2F`, `%2E%2E`, nested encodings)
- Control characters and invisible Unicode (zero-width, direction overrides)
- Leading or trailing whitespace
"""

import re
import unicodedata
import urllib.parse

from .exceptions import InvalidIdentifierError

_INVALID_CONTROL_CHARS: set[int] = set(range(0x00, 0x20)) | {0x7F}  # includes DEL

_UNICODE_INVISIBLES: set[int] = {
    # Zero-width characters
    0x200B,  # Zero Width Space
    0x200C,  # Zero Width Non-Joiner
    0x200D,  # Zero Width Joiner
    0xFEFF,  # Zero Width No-Break Space (BOM)
    # Directional override characters
    0x202E,  # Right-to-Left Override
    0x202D,  # Left-to-Right Override
    0x202C,  # Pop Directional Formatting
    # Line/paragraph separators
    0x2028,  # Line Separator
    0x2029,  # Paragraph Separator
    # Other problematic Unicode
    0x00A0,  # Non-breaking space
    0x1680,  # Ogham space mark
}

_UNICODE_SLASHES: set[str] = {"\uff0f", "\u2215", "\u2044", "\uff3c"}

_URL_SEPARATOR_PATTERNS = re.compile(r"%2[Ff]|%5[Cc]|%2[Ee]%2[Ee]")

MAX_IDENTIFIER_BYTES = 256


def validate_path_segment(value: str, field: str) -> str:
    """
    Validate that `value` can be used verbatim as one storage prefix segment.

    Args:
        value: The raw identifier from the request.
        field: The parameter name, used in error context.

    Returns:
        The identifier, unchanged.

    Raises:
        InvalidIdentifierError: If the identifier is unsafe.

    Examples:
        >>> validate_path_segment("a1b2-c3d4", "userSub")
        "a1b2-c3d4"

        >>> validate_path_segment("../other-user", "userSub")
        InvalidIdentifierError: userSub contains a path separator...
    """
    if not isinstance(value, str):
        raise InvalidIdentifierError(
            f"{field} is not a valid string",
            error_code="INVALID_IDENTIFIER_TYPE",
            context={"field": field, "type": type(value).__name__},
        )

    utf8_length = len(value.encode("utf-8"))
    if utf8_length == 0 or utf8_length > MAX_IDENTIFIER_BYTES:
        raise InvalidIdentifierError(
            f"{field} must be between 1 and {MAX_IDENTIFIER_BYTES} bytes",
            error_code="INVALID_IDENTIFIER_LENGTH",
            context={"field": field, "length": utf8_length},
        )

    if value != value.strip():
        raise InvalidIdentifierError(
            f"{field} contains leading or trailing whitespace",
            context={"field": field},
        )

    for char in value:
        char_code = ord(char)
        if char_code in _INVALID_CONTROL_CHARS:
            raise InvalidIdentifierError(
                f"{field} contains invalid control characters",
                context={"field": field, "char_code": hex(char_code)},
            )
        # Format characters (Cf) are invisible in logs and consoles.
        if char_code in _UNICODE_INVISIBLES or unicodedata.category(char) == "Cf":
            raise InvalidIdentifierError(
                f"{field} contains invalid Unicode invisible characters",
                context={"field": field, "char_code": hex(char_code)},
            )

    if "/" in value or "\\" in value or any(s in value for s in _UNICODE_SLASHES):
        raise InvalidIdentifierError(
            f"{field} contains a path separator",
            error_code="UNSAFE_IDENTIFIER",
            context={"field": field},
        )

    if value in {".", ".."}:
        raise InvalidIdentifierError(
            f"{field} is a relative path component",
            error_code="UNSAFE_IDENTIFIER",
            context={"field": field},
        )

    # Recursively decode until stable to catch nested encodings.
    decoded = value
    for _ in range(5):
        new_decoded = urllib.parse.unquote(decoded)
        if new_decoded == decoded:
            break
        decoded = new_decoded

    if (
        _URL_SEPARATOR_PATTERNS.search(value)
        or "/" in decoded
        or "\\" in decoded
        or decoded in {".", ".."}
    ):
        raise InvalidIdentifierError(
            f"{field} contains URL-encoded path separators or traversal sequences",
            error_code="UNSAFE_IDENTIFIER",
            context={"field": field},
        )

    return value
