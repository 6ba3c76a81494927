"""Secrets-file helpers shared by the provisioning modules."""
from typing import Iterable, Tuple

from ..config import SESSION_TOKEN_PREFIX


def filter_session_token(value: str) -> str:
    """Drop short-lived OAuth session tokens; they cannot go in the .env file.

    Pure prefix check. Anything else, malformed or not, passes unchanged.
    """
    if value.strip().startswith(SESSION_TOKEN_PREFIX):
        return ""
    return value


def has_value(value: str) -> bool:
    return bool(value.strip())


def render_env_file(entries: Iterable[Tuple[str, str]]) -> str:
    """``KEY=value`` lines; embedded newlines would split a value, so they are stripped."""
    lines = []
    for key, value in entries:
        value = value.replace("\r", "").replace("\n", "")
        lines.append(f"{key}={value}")
    return "\n".join(lines) + "\n"
