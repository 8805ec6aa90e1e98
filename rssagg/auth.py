"""Extraction of API keys from request headers."""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Tuple, Union

HeaderSource = Union[Mapping[str, Any], Iterable[Tuple[str, Any]]]


class AuthError(Exception):
    """Raised when a request carries no usable API key."""


def _header_value(headers: HeaderSource, name: str) -> str:
    items = headers.items() if hasattr(headers, "items") else headers
    wanted = name.lower()
    for key, value in items:
        if key.lower() == wanted:
            if isinstance(value, (list, tuple)):
                return str(value[0]) if value else ""
            return str(value)
    return ""


def get_api_key(headers: HeaderSource) -> str:
    """Return the key from an ``Authorization: ApiKey <key>`` header."""
    value = _header_value(headers, "Authorization")
    if not value:
        raise AuthError("no authentication info found")

    parts = value.split(" ")
    if len(parts) != 2:
        raise AuthError("malformed auth header")
    scheme, key = parts
    if scheme != "ApiKey":
        raise AuthError("malformed first part of the auth header")
    return key