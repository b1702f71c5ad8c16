"""Anthropic Messages API provider (classification and extraction)"""
import logging
from typing import Any, Dict, Optional

import httpx

from ideascan.config import settings
from ideascan.models.classification import ProviderKind
from ideascan.services.llm.base import BaseProvider
from ideascan.services.llm.dtos import (
    ClassificationRequest,
    ClassificationResponse,
    ExtractionRequest,
    ExtractionResponse,
)
from ideascan.services.llm.exceptions import PermanentProviderFailure

logger = logging.getLogger(__name__)

API_VERSION = "2023-06-01"

CLASSIFY_SYSTEM_PROMPT = (
    "You are a classification assistant. Analyze Reddit posts and classify them as potential "
    "SaaS idea sources. Respond only in valid JSON format."
)
EXTRACT_SYSTEM_PROMPT = (
    "You are a SaaS opportunity analyst. Extract concrete, buildable business ideas from Reddit "
    "discussions. Respond only in valid JSON format."
)


class AnthropicProvider(BaseProvider):
    kind = ProviderKind.ANTHROPIC
    base_url = "https://api.anthropic.com"

    def __init__(
        self,
        api_key: str,
        model: Optional[str] = None,
        extract_model: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
        max_attempts: Optional[int] = None,
    ):
        super().__init__(api_key, model or settings.ANTHROPIC_CLASSIFY_MODEL, transport, max_attempts)
        self.extract_model = extract_model or settings.ANTHROPIC_EXTRACT_MODEL

    def supports_extraction(self) -> bool:
        return True

    def _headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": API_VERSION,
            "Content-Type": "application/json",
        }

    def _complete(self, model: str, system: str, prompt: str, max_tokens: int, temperature: float) -> Dict[str, Any]:
        return self._post_json("/v1/messages", {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "system": system,
            "messages": [{"role": "user", "content": prompt}],
        })

    @staticmethod
    def _text_of(data: Dict[str, Any]) -> str:
        blocks = data.get("content")
        if not isinstance(blocks, list):
            return ""
        return "".join(b.get("text", "") for b in blocks if isinstance(b, dict) and b.get("type") == "text")

    def classify(self, request: ClassificationRequest) -> ClassificationResponse:
        data = self._complete(
            self.model, CLASSIFY_SYSTEM_PROMPT, request.prompt_content(),
            settings.CLASSIFY_MAX_TOKENS, settings.CLASSIFY_TEMPERATURE,
        )
        if data.get("stop_reason") == "refusal":
            logger.warning(f"anthropic: refused to classify post {request.post_id}")
            return ClassificationResponse(
                verdict="skip", confidence=0.0, category="content-filtered",
                reasoning="Model refused to classify this content", raw_response=data,
            )

        parsed = self._parse_model_json(self._text_of(data))
        return ClassificationResponse.from_json(parsed, raw_response=data)

    def extract(self, request: ExtractionRequest) -> ExtractionResponse:
        data = self._complete(
            self.extract_model, EXTRACT_SYSTEM_PROMPT, request.prompt_content(),
            settings.EXTRACT_MAX_TOKENS, settings.EXTRACT_TEMPERATURE,
        )
        if data.get("stop_reason") == "refusal":
            logger.warning("anthropic: refused extraction, treating as no ideas")
            return ExtractionResponse(ideas=[], raw_response=data)

        parsed = self._parse_model_json(self._text_of(data))
        ideas = parsed.get("ideas")
        if ideas is None:
            raise PermanentProviderFailure("anthropic extraction output has no 'ideas' key", provider=self.provider_name())
        return ExtractionResponse.from_json(ideas, raw_response=data)
