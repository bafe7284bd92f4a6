"""
OpenRouter gateway helpers.

When every gateway attempt fails with "no allowed providers", the API key's
provider allow-list is the likely culprit.  build_no_allowed_providers_message()
lists the models that were tried and, best-effort, which upstream providers
serve them, so the user knows what to allow.
"""

from __future__ import annotations

import asyncio
import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from typing import Awaitable, Callable, Iterable

from summarycast.registry import Attempt

logger = logging.getLogger(__name__)

_ENDPOINTS_URL = "https://openrouter.ai/api/v1/models/{author}/{slug}/endpoints"

EndpointFetcher = Callable[[str], Awaitable[dict | list]]


def truncate_list(items: Iterable[str], limit: int) -> str:
    cleaned = [item.strip() for item in items if item.strip()]
    if len(cleaned) <= limit:
        return ", ".join(cleaned)
    return f"{', '.join(cleaned[:limit])} (+{len(cleaned) - limit} more)"


async def _http_get(url: str, timeout: float = 15) -> dict | list:
    """Async HTTP GET via stdlib urllib (no extra deps)."""

    def _do() -> dict | list:
        req = urllib.request.Request(
            url,
            headers={"Accept": "application/json", "User-Agent": "summarycast/1.0"},
            method="GET",
        )
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            return json.loads(resp.read())

    return await asyncio.to_thread(_do)


def _split_model(model_id: str) -> tuple[str, str] | None:
    if not model_id.startswith("openrouter/"):
        return None
    author, _, slug = model_id.removeprefix("openrouter/").partition("/")
    if not author or not slug:
        return None
    return author, slug


async def _providers_for(model_id: str, fetch: EndpointFetcher) -> list[str]:
    parts = _split_model(model_id)
    if parts is None:
        return []
    url = _ENDPOINTS_URL.format(
        author=urllib.parse.quote(parts[0], safe=""),
        slug=urllib.parse.quote(parts[1], safe=""),
    )
    try:
        payload = await fetch(url)
    except (urllib.error.URLError, OSError, ValueError, TimeoutError) as exc:
        logger.debug("Endpoint lookup failed for %s: %s", model_id, exc)
        return []
    data = payload.get("data") if isinstance(payload, dict) else None
    endpoints = data.get("endpoints") if isinstance(data, dict) else None
    if not isinstance(endpoints, list):
        return []
    names = {
        e["provider_name"].strip()
        for e in endpoints
        if isinstance(e, dict) and isinstance(e.get("provider_name"), str) and e["provider_name"].strip()
    }
    return sorted(names)


async def build_no_allowed_providers_message(
    attempts: list[Attempt],
    fetch: EndpointFetcher | None = None,
) -> str:
    model_ids = list(dict.fromkeys(a.model_id for a in attempts if a.model_id.startswith("openrouter/")))
    fetch = fetch or _http_get
    per_model = await asyncio.gather(*(_providers_for(m, fetch) for m in model_ids))
    providers = sorted({name for names in per_model for name in names})

    hint = f" Providers to allow: {truncate_list(providers, 10)}." if providers else ""
    return (
        "OpenRouter could not route any models with this API key (no allowed providers). "
        f"Tried: {truncate_list(model_ids, 6)}.{hint} "
        "Hint: raise the timeout and/or enable debug logging to see per-model failures. "
        "(OpenRouter: Settings → API Keys → edit key → Allowed providers.)"
    )
