"""OpenAI credentials for the Codex catalog.

Resolution order: ``OPENAI_API_KEY``, ``CODEX_API_KEY``, then the
Codex CLI login file (``~/.codex/auth.json``), which holds either an
``OPENAI_API_KEY`` or an OAuth ``tokens.access_token``.
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class CodexAuth:
    token: str | None = None
    account_id: str | None = None


def read_codex_auth(path: Path | str) -> CodexAuth:
    p = Path(path)
    try:
        raw = json.loads(p.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return CodexAuth()
    except (OSError, json.JSONDecodeError) as exc:
        logger.debug("Could not read Codex auth file %s: %s", p, exc)
        return CodexAuth()
    if not isinstance(raw, dict):
        return CodexAuth()

    tokens = raw.get("tokens") if isinstance(raw.get("tokens"), dict) else {}
    token = raw.get("OPENAI_API_KEY")
    if not isinstance(token, str) or not token:
        token = tokens.get("access_token")
    account_id = raw.get("account_id") or tokens.get("account_id")
    return CodexAuth(
        token=token if isinstance(token, str) and token else None,
        account_id=account_id if isinstance(account_id, str) else None,
    )


def get_openai_token(auth_path: Path | str) -> str | None:
    for name in ("OPENAI_API_KEY", "CODEX_API_KEY"):
        value = os.environ.get(name)
        if value:
            return value
    return read_codex_auth(auth_path).token
