"""
Health check helpers for the database and the LLM configuration.

Used by ``echovault status``. Both checks are cheap and never raise.
"""

import socket

from sqlalchemy.engine import make_url

from echovault.config import ProviderSettings


def check_database(url: str | None = None, timeout: float = 2.0) -> bool:
    """Check that the PostgreSQL host in ``url`` accepts TCP connections."""
    url = url or ProviderSettings.from_env().database_url
    try:
        parsed = make_url(url)
        host = parsed.host or "localhost"
        port = int(parsed.port or 5432)
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except Exception:
        return False


def check_llm_config() -> bool:
    """Check that an API key for the OpenAI-compatible providers is configured."""
    return bool(ProviderSettings.from_env().llm_api_key.strip())
