from __future__ import annotations

from rest_framework import status

from core.models import Terminal


def resolve_terminal(code) -> tuple[Terminal | None, str | None, int | None]:
    """Resolve an active terminal by code, returning an error message and status code on failure."""
    if not code:
        return None, "Terminal code is required.", status.HTTP_400_BAD_REQUEST

    terminal = Terminal.objects.filter(code=code).first()
    if terminal is None:
        return None, "Terminal was not found.", status.HTTP_404_NOT_FOUND

    if not terminal.is_active:
        return None, "Terminal is inactive.", status.HTTP_404_NOT_FOUND

    return terminal, None, None
