"""OpenAI chat-completions provider (classification only)"""
import logging
from typing import Optional

import httpx
import openai

from ideascan.config import settings
from ideascan.models.classification import ProviderKind
from ideascan.services.llm.base import BaseProvider
from ideascan.services.llm.dtos import ClassificationRequest, ClassificationResponse
from ideascan.services.llm.exceptions import PermanentProviderFailure, TransientProviderFailure

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a classification assistant. Analyze Reddit posts and classify them as potential "
    "SaaS idea sources. Respond only in JSON format."
)

TRANSIENT_ERRORS = (
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)


class OpenAIProvider(BaseProvider):
    """Chat Completions through the ``openai`` SDK.

    The SDK does the HTTP-level retries (``max_retries``); it shares this
    provider's ``httpx.Client`` so timeouts and transports stay configurable.
    """

    kind = ProviderKind.OPENAI

    def __init__(
        self,
        api_key: str,
        model: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
        max_attempts: Optional[int] = None,
    ):
        super().__init__(api_key, model or settings.OPENAI_CLASSIFY_MODEL, transport, max_attempts)
        # An empty key fails with a 401 per request instead of at worker start
        self.client = openai.OpenAI(
            api_key=api_key or "",
            max_retries=self.max_attempts - 1,
            timeout=httpx.Timeout(settings.LLM_REQUEST_TIMEOUT, connect=settings.LLM_CONNECT_TIMEOUT),
            http_client=self._client,
        )

    def close(self) -> None:
        self.client.close()

    def _create(self, request: ClassificationRequest):
        name = self.provider_name()
        try:
            return self.client.chat.completions.create(
                model=self.model,
                max_completion_tokens=settings.CLASSIFY_MAX_TOKENS,
                response_format={"type": "json_object"},
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": request.prompt_content()},
                ],
            )
        except TRANSIENT_ERRORS as e:
            raise TransientProviderFailure(
                f"{name} request failed: {e}", provider=name, status_code=getattr(e, "status_code", None),
            ) from e
        except openai.APIStatusError as e:
            if e.status_code == 408:
                raise TransientProviderFailure(f"{name} API error 408", provider=name, status_code=408) from e
            raise PermanentProviderFailure(
                f"{name} API error {e.status_code}: {e.message[:200]}", provider=name, status_code=e.status_code,
            ) from e
        except (openai.APIResponseValidationError, ValueError) as e:
            raise PermanentProviderFailure(f"{name} returned a malformed body", provider=name) from e

    def classify(self, request: ClassificationRequest) -> ClassificationResponse:
        completion = self._create(request)

        # A non-JSON body comes back from the SDK as plain text
        choices = getattr(completion, "choices", None)
        if not choices:
            raise PermanentProviderFailure("openai response has no choices", provider=self.provider_name())
        choice = choices[0]
        raw = completion.to_dict()

        if choice.finish_reason == "content_filter":
            logger.warning(f"openai: content filter triggered for post {request.post_id}")
            return ClassificationResponse(
                verdict="skip", confidence=0.0, category="content-filtered",
                reasoning="Content was filtered by OpenAI", raw_response=raw,
            )

        content = choice.message.content if choice.message else ""
        parsed = self._parse_model_json(content or "")
        return ClassificationResponse.from_json(parsed, raw_response=raw)
