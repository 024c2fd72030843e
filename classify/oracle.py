"""HTTP client for the classification oracle.

Speaks the ``generateContent`` REST dialect: a list of content parts in, the
model's text plus any web-grounding links out.
"""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass, field

import httpx

logger = logging.getLogger(__name__)


class OracleError(Exception):
    """Raised when an oracle request fails or returns an unusable body."""


class RateLimitedError(OracleError):
    """Raised when the oracle signals quota exhaustion; safe to retry."""


@dataclass(frozen=True)
class OracleResponse:
    text: str
    grounding_urls: list[str] = field(default_factory=list)


def text_part(text: str) -> dict:
    return {"text": text}


def image_part(image: bytes, mime_type: str = "image/jpeg") -> dict:
    return {
        "inlineData": {
            "mimeType": mime_type,
            "data": base64.b64encode(image).decode("ascii"),
        }
    }


class OracleClient:
    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        api_key: str | None,
        model: str,
        base_url: str,
        timeout: float = 30.0,
    ) -> None:
        self._client = client
        self._api_key = (api_key or "").strip()
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    async def generate(
        self,
        parts: list[dict],
        *,
        system_instruction: str | None = None,
        response_schema: dict | None = None,
        web_search: bool = False,
        max_output_tokens: int | None = None,
    ) -> OracleResponse:
        if not self._api_key:
            raise OracleError("oracle api key not configured")

        payload: dict = {"contents": [{"role": "user", "parts": parts}]}
        if system_instruction:
            payload["systemInstruction"] = {"parts": [text_part(system_instruction)]}
        if response_schema is not None:
            payload["generationConfig"] = {
                "responseMimeType": "application/json",
                "responseSchema": response_schema,
            }
        if max_output_tokens is not None:
            payload.setdefault("generationConfig", {})["maxOutputTokens"] = max_output_tokens
        if web_search:
            payload["tools"] = [{"google_search": {}}]

        url = f"{self._base_url}/models/{self._model}:generateContent"
        try:
            logger.debug("Calling oracle at %s", url)
            response = await self._client.post(
                url,
                json=payload,
                headers={"x-goog-api-key": self._api_key},
                timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            raise OracleError("oracle request timed out") from exc
        except httpx.RequestError as exc:
            raise OracleError(f"oracle request failed: {exc.__class__.__name__}") from exc

        if response.status_code == 429 or _is_resource_exhausted(response):
            raise RateLimitedError(f"oracle rate limited (http {response.status_code})")
        if response.status_code != 200:
            raise OracleError(f"oracle http {response.status_code}")

        try:
            data = response.json()
        except json.JSONDecodeError as exc:
            raise OracleError("oracle returned a non-json body") from exc
        return _parse_response(data)


def _is_resource_exhausted(response: httpx.Response) -> bool:
    if response.status_code < 400:
        return False
    try:
        body = response.json()
    except json.JSONDecodeError:
        return False
    error = body.get("error") if isinstance(body, dict) else None
    return isinstance(error, dict) and error.get("status") == "RESOURCE_EXHAUSTED"


def _parse_response(data: object) -> OracleResponse:
    if not isinstance(data, dict):
        raise OracleError("unexpected oracle response format")
    candidates = data.get("candidates") or []
    if not candidates or not isinstance(candidates[0], dict):
        raise OracleError("oracle returned no candidates")
    candidate = candidates[0]

    content = candidate.get("content")
    if not isinstance(content, dict):
        content = {}
    texts = [
        str(part["text"])
        for part in (content.get("parts") or [])
        if isinstance(part, dict) and part.get("text")
    ]

    urls: list[str] = []
    metadata = candidate.get("groundingMetadata")
    if not isinstance(metadata, dict):
        metadata = {}
    for chunk in metadata.get("groundingChunks") or []:
        web = chunk.get("web") if isinstance(chunk, dict) else None
        if isinstance(web, dict) and web.get("uri"):
            urls.append(str(web["uri"]))

    return OracleResponse(text="".join(texts), grounding_urls=urls)
