"""
Opinion providers for the AX panel. A provider takes a model identifier and the
subject prompt and returns the model's raw text; parsing happens elsewhere.

OPINION_PROVIDER=deterministic returns a fixed valid opinion without network access.
"""
import json
from typing import Optional, Protocol, runtime_checkable

import requests

from ..config import settings
from ..exceptions import ProviderError
from ..logger import logger


@runtime_checkable
class OpinionProvider(Protocol):
    def get_opinion(self, model_identifier: str, subject_description: str, max_output_size: int) -> str:
        ...


class OpenRouterOpinionProvider:
    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.OPENROUTER_API_KEY
        self.base_url = (base_url or settings.OPENROUTER_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.OPINION_TIMEOUT_SECONDS

    def get_opinion(self, model_identifier: str, subject_description: str, max_output_size: int) -> str:
        if not self.api_key:
            raise ProviderError("OPENROUTER_API_KEY is not configured")

        try:
            response = requests.post(
                f"{self.base_url}/chat/completions",
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                    "HTTP-Referer": settings.OPENROUTER_APP_URL,
                    "X-Title": "AX Analysis",
                },
                json={
                    "model": model_identifier,
                    "messages": [{"role": "user", "content": subject_description}],
                    "max_tokens": max_output_size,
                    "temperature": 0.3,
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise ProviderError(f"OpenRouter request failed: {e}")

        if response.status_code != 200:
            try:
                detail = response.json().get("error", {}).get("message")
            except ValueError:
                detail = None
            raise ProviderError(f"OpenRouter API error: {detail or response.reason}")

        data = response.json()
        choices = data.get("choices") or []
        if not choices:
            raise ProviderError("No response from OpenRouter API")

        content = (choices[0].get("message") or {}).get("content")
        if not content:
            raise ProviderError("Empty response from OpenRouter API")
        return content


class DeterministicOpinionProvider:
    """Fixed, valid opinion for tests and offline runs."""

    def __init__(self, ax_score: int = 72):
        self.ax_score = ax_score

    def get_opinion(self, model_identifier: str, subject_description: str, max_output_size: int) -> str:
        opinion = {
            "axScore": self.ax_score,
            "factors": [
                {
                    "name": "Structured Data",
                    "score": self.ax_score,
                    "status": "excellent" if self.ax_score >= 70 else "good",
                    "description": "Schema.org product markup is present.",
                },
            ],
            "agentAccessibility": f"{model_identifier} could read the page content without scripting.",
            "recommendations": [
                "Publish a sitemap.xml",
                "Add JSON-LD product markup",
            ],
        }
        return json.dumps(opinion)


_provider: Optional[OpinionProvider] = None


def get_opinion_provider(*, force_refresh: bool = False) -> OpinionProvider:
    global _provider
    if force_refresh:
        _provider = None
    if _provider is None:
        if settings.OPINION_PROVIDER.lower() == "deterministic":
            _provider = DeterministicOpinionProvider()
            logger.info("Using deterministic opinion provider")
        else:
            _provider = OpenRouterOpinionProvider()
    return _provider
