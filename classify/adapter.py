from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from classify.models import FALLBACK_ANALYSIS, TRIAGE_SCHEMA, AnalysisResponse
from classify.oracle import (
    OracleClient,
    OracleError,
    OracleResponse,
    RateLimitedError,
    image_part,
    text_part,
)
from classify.repair import Failed, Repaired, parse_analysis

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]

TRIAGE_INSTRUCTION = (
    "You are a disaster triage unit. Filter out spam. Prioritize life threats (RED)."
    " Ensure JSON output is precise and all location/text fields are simple strings."
)


class ClassificationAdapter:
    """Turns raw text into an AnalysisResponse. Never raises."""

    def __init__(
        self,
        oracle: OracleClient,
        *,
        attempts: int = 3,
        base_delay: float = 1.0,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._oracle = oracle
        self._attempts = attempts
        self._base_delay = base_delay
        self._sleep = sleep

    async def classify(self, text: str, image: bytes | None = None) -> AnalysisResponse:
        parts = [text_part(f'ANALYZE DISASTER SIGNAL: "{text}"')]
        if image:
            parts.append(image_part(image))

        try:
            response = await self.call_with_retry(
                parts,
                system_instruction=TRIAGE_INSTRUCTION,
                response_schema=TRIAGE_SCHEMA,
            )
        except OracleError as exc:
            logger.warning("Classification fell back: %s", exc)
            return FALLBACK_ANALYSIS

        outcome = parse_analysis(response.text)
        if isinstance(outcome, Failed):
            logger.warning("Classification fell back: %s", outcome.reason)
            return FALLBACK_ANALYSIS
        if isinstance(outcome, Repaired):
            logger.warning("Classifier output repaired: %s", "; ".join(outcome.warnings))
        return outcome.result

    async def call_with_retry(self, parts: list[dict], **kwargs) -> OracleResponse:
        """Call the oracle, backing off on rate limits only.

        Other oracle errors propagate on the first failure.
        """
        for attempt in range(self._attempts):
            try:
                return await self._oracle.generate(parts, **kwargs)
            except RateLimitedError:
                if attempt >= self._attempts - 1:
                    raise
                delay = self._base_delay * (2**attempt)
                logger.info("Oracle rate limited, retrying in %.1fs", delay)
                await self._sleep(delay)
        raise OracleError("oracle quota exhausted")
