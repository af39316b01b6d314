"""
Generative fallback for the Facts Service.
"""

import asyncio
import json
import time
from typing import Dict, Any, Optional, List, Callable

from shared.logging import get_logger
from shared.errors import GenerationError
from shared.metrics import MetricsCollector

from service_facts.app.models import Fact, FACT_MIN_LENGTH, FACT_MAX_LENGTH
from service_facts.app.protocols import TextGenerator


SYSTEM_PROMPT = """You are a fact generator. Produce one accurate, verifiable and engaging fact.

Requirements:
- Facts must be accurate and verifiable
- Keep facts concise but informative (50-150 words)
- Provide source context when possible
- Make facts appropriate for general audiences

Category focus: {category}

Respond with JSON only:
{{
  "fact": "The actual fact text",
  "category": "{category}",
  "source_context": "Brief context about where this fact comes from",
  "tags": ["tag1", "tag2", "tag3"]
}}"""

MODERATION_PROMPT = """You are a content moderator. Check the text for inappropriate content,
misinformation, harmful content and copyright violations.

Respond with JSON only:
{"approved": true, "confidence": 0.0, "issues": []}"""

MIN_MODERATION_CONFIDENCE = 0.5


class FallbackGenerator:
    """Produces a fact from a text generator when the store has none."""

    def __init__(self,
                 client: TextGenerator,
                 model: str = "xai/grok-3",
                 timeout: float = 8.0,
                 moderation_enabled: bool = False,
                 clock: Callable[[], float] = time.time,
                 metrics: Optional[MetricsCollector] = None):
        self.client = client
        self.model = model
        self.timeout = timeout
        self.moderation_enabled = moderation_enabled
        self.clock = clock
        self.metrics = metrics
        self.logger = get_logger("facts.fallback_generator")

    def build_prompt(self, category: str) -> List[Dict[str, str]]:
        """Build the system and user messages for a category."""
        return [
            {"role": "system", "content": SYSTEM_PROMPT.format(category=category)},
            {"role": "user", "content": f"Generate an interesting fact in the {category} category"},
        ]

    def parse_response(self, raw: str, category: str) -> Fact:
        """Parse generator output, accepting either the JSON shape or plain text."""
        text = (raw or "").strip()
        source = "AI Generated"
        tags = [category]

        try:
            parsed = json.loads(text)
        except ValueError:
            parsed = None

        if isinstance(parsed, dict):
            text = str(parsed.get("fact") or "").strip()
            source = parsed.get("source_context") or source
            raw_tags = parsed.get("tags")
            if isinstance(raw_tags, str):
                raw_tags = [raw_tags]
            if isinstance(raw_tags, list):
                tags = [str(tag).strip().lower() for tag in raw_tags if str(tag).strip()] or tags

        if not text:
            raise GenerationError("Generator returned no fact")
        if not FACT_MIN_LENGTH <= len(text) <= FACT_MAX_LENGTH:
            raise GenerationError(
                "Generated fact has invalid length",
                details={"length": len(text)}
            )

        return Fact(
            text=text,
            category=category,
            verified=False,
            generated=True,
            source=source,
            tags=tags,
            model=self.model,
            created_at=self.clock()
        )

    async def _call(self, prompt: List[Dict[str, str]], options: Dict[str, Any]) -> str:
        try:
            return await asyncio.wait_for(self.client.complete(prompt, options), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise GenerationError("Generator timed out", details={"timeout": self.timeout}) from e
        except GenerationError:
            raise
        except Exception as e:
            raise GenerationError(str(e)) from e

    async def moderate(self, text: str) -> bool:
        """Ask the generator to review a fact. Any failure rejects it."""
        if not self.moderation_enabled:
            return True

        prompt = [
            {"role": "system", "content": MODERATION_PROMPT},
            {"role": "user", "content": f'Moderate this content: "{text}"'},
        ]

        try:
            raw = await self._call(prompt, {"temperature": 0.1})
            result = json.loads(raw)
            approved = bool(result.get("approved")) and float(result.get("confidence", 0.0)) >= MIN_MODERATION_CONFIDENCE
        except Exception as e:
            self.logger.warning("Moderation failed, rejecting fact", error=str(e))
            return False

        if not approved:
            self.logger.warning("Fact rejected by moderation", issues=result.get("issues"))
        return approved

    async def generate(self, category: str) -> Fact:
        """Generate one fact for a category, raising ``GenerationError`` on any failure."""
        start_time = self.clock()
        try:
            raw = await self._call(self.build_prompt(category), {})
            fact = self.parse_response(raw, category)

            if not await self.moderate(fact.text):
                raise GenerationError("Generated fact rejected by moderation")

        except GenerationError as e:
            self.logger.warning("Fact generation failed", category=category, error=e.message)
            if self.metrics:
                self.metrics.increment_counter("generator_calls_total", result="error")
            raise

        if self.metrics:
            self.metrics.increment_counter("generator_calls_total", result="ok")
        self.logger.info(
            "Fact generated",
            category=category,
            model=self.model,
            duration_ms=round((self.clock() - start_time) * 1000, 2)
        )
        return fact
