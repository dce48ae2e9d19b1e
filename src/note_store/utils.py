"""Utility functions for the note store."""
from typing import Union

from sqlalchemy.engine import URL, make_url


def escape_like_pattern(value: str) -> str:
    """Escape SQL LIKE wildcards to treat them as literals.

    User input containing '%' or '_' would otherwise widen a substring
    search to unintended matches.

    Args:
        value: User input string that may contain LIKE wildcards

    Returns:
        String with '%', '_', and '\\' escaped for use with ``escape="\\\\"``

    Example:
        >>> escape_like_pattern("100% complete")
        '100\\\\% complete'
        >>> escape_like_pattern("file_name")
        'file\\\\_name'
    """
    escape_table = str.maketrans(
        {
            "\\": "\\\\",  # Escape backslash first
            "%": "\\%",
            "_": "\\_",
        }
    )
    return value.translate(escape_table)


def redact_url(url: Union[str, URL]) -> str:
    """Render a database URL for logging with its password masked.

    Args:
        url: A SQLAlchemy URL or URL string.

    Returns:
        The URL string with the password replaced by ``***``.
    """
    if isinstance(url, str):
        url = make_url(url)
    return url.render_as_string(hide_password=True)
