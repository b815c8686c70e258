"""Request dependencies shared by the routers."""

from fastapi import Header, HTTPException, status

from config import get_settings
from db.connection import get_db as get_db  # noqa: F401  re-exported for routes


def get_api_key(x_api_key: str = Header(default="")) -> str:
    """Mutations need ``X-API-Key`` once HERA_API_KEY is configured; reads stay open."""
    expected: str | None = get_settings().api_key
    if expected and x_api_key != expected:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or missing API key")
    return x_api_key
