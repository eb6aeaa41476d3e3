"""Utility functions for the Notegraph MCP server."""
import re

_WHITESPACE_RUN = re.compile(r"\s+")


def collapse_whitespace(text: str) -> str:
    """Replace every run of whitespace (newlines included) with one space."""
    return _WHITESPACE_RUN.sub(" ", text)


def escape_like_pattern(value: str) -> str:
    """Escape SQL LIKE wildcards so user input matches literally.

    Must be paired with ``escape="\\\\"`` on the ``like``/``ilike`` call.

    Example:
        >>> escape_like_pattern("100% done")
        '100\\\\% done'
        >>> escape_like_pattern("snake_case")
        'snake\\\\_case'
    """
    escape_table = str.maketrans(
        {
            "\\": "\\\\",  # backslash first
            "%": "\\%",
            "_": "\\_",
        }
    )
    return value.translate(escape_table)
