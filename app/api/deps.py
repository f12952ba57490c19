from fastapi import Header

from app.db import get_db


def get_actor(x_actor_id: str | None = Header(default=None)) -> str | None:
    """Identity of the caller, taken from the optional ``X-Actor-Id`` header."""
    if x_actor_id is None:
        return None
    return x_actor_id.strip() or None


__all__ = ["get_db", "get_actor"]
