"""HTTP surface for the identity service."""

from __future__ import annotations

from .app import create_app, error_response, status_for

__all__ = ["create_app", "error_response", "status_for"]
