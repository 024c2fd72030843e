from __future__ import annotations

import time

import httpx


FETCH_TIMEOUT = httpx.Timeout(connect=5.0, read=15.0, write=5.0, pool=5.0)


async def fetch(
    client: httpx.AsyncClient,
    *,
    url: str,
    user_agent: str,
    params: dict[str, str | int | list[str]] | None = None,
    extra_headers: dict[str, str] | None = None,
) -> tuple[int, bytes | None, dict[str, str], int]:
    """GET a feed. Content is returned only for 2xx responses."""
    headers = {
        "User-Agent": user_agent,
        "Accept": "application/json, application/geo+json, */*",
    }
    if extra_headers:
        headers.update(extra_headers)

    started = time.perf_counter()
    response = await client.get(
        url, params=params, headers=headers, timeout=FETCH_TIMEOUT
    )
    elapsed_ms = int((time.perf_counter() - started) * 1000)
    return (
        response.status_code,
        (response.content if 200 <= response.status_code < 300 else None),
        dict(response.headers),
        elapsed_ms,
    )
