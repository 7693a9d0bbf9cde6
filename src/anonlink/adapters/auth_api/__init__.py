"""Public interface for the identity API client adapter."""

from __future__ import annotations

from .client import HttpAuthApi
from .schema import AuthResponse, ErrorPayload, LinkRequestPayload
from .translator import error_from_response, parse_auth_payload, parse_link_status

__all__ = [
    "AuthResponse",
    "ErrorPayload",
    "HttpAuthApi",
    "LinkRequestPayload",
    "error_from_response",
    "parse_auth_payload",
    "parse_link_status",
]
