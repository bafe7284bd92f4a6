"""Local store for the daemon's bearer token.

The daemon and its readers share one random token kept in a local JSON file
(gitignored).  The daemon creates it on first start; readers load it to
authenticate their SSE connections.
"""

from __future__ import annotations

import json
import secrets
from pathlib import Path

_AUTH_PATH = Path('.summarycast_token.json')


def load_token(path: Path | None = None) -> str | None:
    path = path or _AUTH_PATH
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding='utf-8'))
    except json.JSONDecodeError:
        return None
    token = data.get('token') if isinstance(data, dict) else None
    if not isinstance(token, str) or not token.strip():
        return None
    return token.strip()


def save_token(token: str, path: Path | None = None) -> None:
    path = path or _AUTH_PATH
    path.write_text(json.dumps({'token': token}, indent=2), encoding='utf-8')


def ensure_token(path: Path | None = None) -> str:
    """Return the stored token, creating and saving a new one if there is none."""
    token = load_token(path)
    if token:
        return token
    token = secrets.token_urlsafe(32)
    save_token(token, path)
    return token
