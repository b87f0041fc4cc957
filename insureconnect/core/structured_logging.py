"""Structured logging helpers (content-safe)."""

import logging
from typing import Any

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once for the API process."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


def build_log_context(
    *,
    user_id: str | None = None,
    post_id: str | None = None,
    chat_id: str | None = None,
    request_id: str | None = None,
    route: str | None = None,
    method: str | None = None,
) -> dict[str, Any]:
    """Return a log context dict without message content or credentials."""
    context: dict[str, Any] = {}
    if user_id:
        context["user_id"] = str(user_id)
    if post_id:
        context["post_id"] = str(post_id)
    if chat_id:
        context["chat_id"] = str(chat_id)
    if request_id:
        context["request_id"] = request_id
    if route:
        context["route"] = route
    if method:
        context["method"] = method
    return context
