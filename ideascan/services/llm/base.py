"""
LLM Provider Base
=================
Shared HTTP plumbing for every provider: one ``httpx.Client`` per provider,
bounded retries with exponential backoff and jitter, ``Retry-After`` support,
and mapping of HTTP outcomes onto the transient / permanent taxonomy.

Subclasses implement ``classify`` (and ``extract`` where supported) and call
``_post_json`` to talk to their API.
"""
from __future__ import annotations

import json
import logging
import random
import re
import time
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Optional

import httpx

from ideascan.config import settings
from ideascan.models.classification import ProviderKind
from ideascan.services.llm.dtos import (
    ClassificationRequest,
    ClassificationResponse,
    ExtractionRequest,
    ExtractionResponse,
)
from ideascan.services.llm.exceptions import (
    CapabilityNotSupported,
    PermanentProviderFailure,
    TransientProviderFailure,
)
from ideascan.utils.clock import utcnow

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {408, 429}

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def is_retryable_status(status_code: int) -> bool:
    return status_code in RETRYABLE_STATUS_CODES or status_code >= 500


def parse_json_response(content: str) -> Optional[Dict[str, Any]]:
    """Pull a JSON object out of free-form model output.

    Tries, in order: a fenced code block, the outermost ``{...}`` slice, then
    the whole text. Returns None when nothing parses to an object.
    """
    if not content:
        return None

    text = content.strip()
    fenced = _FENCED_BLOCK.search(text)
    if fenced:
        text = fenced.group(1).strip()
    else:
        start, end = text.find("{"), text.rfind("}")
        if start != -1 and end > start:
            text = text[start:end + 1]

    text = _CONTROL_CHARS.sub("", text)
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def _retry_after_seconds(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("retry-after")
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    return max(0.0, (when.replace(tzinfo=None) - utcnow()).total_seconds())


class BaseProvider:
    """Common HTTP behaviour for LLM providers"""

    kind: ProviderKind
    base_url: str = ""

    def __init__(
        self,
        api_key: str,
        model: str,
        transport: Optional[httpx.BaseTransport] = None,
        max_attempts: Optional[int] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.max_attempts = max_attempts or settings.LLM_HTTP_MAX_ATTEMPTS
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=httpx.Timeout(settings.LLM_REQUEST_TIMEOUT, connect=settings.LLM_CONNECT_TIMEOUT),
            transport=transport,
        )

    # ── Capabilities ──────────────────────────────────────────────────────────

    def provider_name(self) -> str:
        return self.kind.value

    def model_name(self) -> str:
        return self.model

    def supports_classification(self) -> bool:
        return True

    def supports_extraction(self) -> bool:
        return False

    def classify(self, request: ClassificationRequest) -> ClassificationResponse:
        raise NotImplementedError

    def extract(self, request: ExtractionRequest) -> ExtractionResponse:
        raise CapabilityNotSupported(
            f"{self.provider_name()} does not support idea extraction",
            provider=self.provider_name(),
        )

    def close(self) -> None:
        self._client.close()

    # ── HTTP ──────────────────────────────────────────────────────────────────

    def _headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json"}

    def _backoff_delay(self, attempt: int, response: Optional[httpx.Response] = None) -> float:
        if response is not None and settings.LLM_HONOR_RETRY_AFTER:
            retry_after = _retry_after_seconds(response)
            if retry_after is not None:
                return min(retry_after, settings.LLM_HTTP_MAX_DELAY_MS / 1000)
        delay_ms = min(settings.LLM_HTTP_BASE_DELAY_MS * (2 ** (attempt - 1)), settings.LLM_HTTP_MAX_DELAY_MS)
        delay_ms += random.randint(0, settings.LLM_HTTP_JITTER_MS)
        return delay_ms / 1000

    def _post_json(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST ``payload`` and return the decoded JSON body.

        Raises TransientProviderFailure once retries on connection errors,
        408, 429 and 5xx are exhausted, PermanentProviderFailure for any
        other non-2xx status or a body that is not JSON.
        """
        name = self.provider_name()
        for attempt in range(1, self.max_attempts + 1):
            last_attempt = attempt == self.max_attempts
            try:
                response = self._client.post(path, json=payload, headers=self._headers())
            except httpx.TransportError as e:
                if last_attempt:
                    raise TransientProviderFailure(f"{name} connection failed: {e}", provider=name) from e
                delay = self._backoff_delay(attempt)
                logger.warning(f"{name}: connection error on attempt {attempt}, retrying in {delay:.2f}s: {e}")
                time.sleep(delay)
                continue

            if response.is_success:
                try:
                    return response.json()
                except ValueError as e:
                    raise PermanentProviderFailure(
                        f"{name} returned a non-JSON body", provider=name, status_code=response.status_code,
                    ) from e

            status = response.status_code
            if not is_retryable_status(status):
                raise PermanentProviderFailure(
                    f"{name} API error {status}: {response.text[:200]}", provider=name, status_code=status,
                )
            if last_attempt:
                raise TransientProviderFailure(
                    f"{name} API error {status} after {attempt} attempts", provider=name, status_code=status,
                )

            delay = self._backoff_delay(attempt, response)
            logger.warning(f"{name}: HTTP {status} on attempt {attempt}, retrying in {delay:.2f}s")
            time.sleep(delay)

        raise TransientProviderFailure(f"{name} request was never attempted", provider=name)

    def _parse_model_json(self, content: str) -> Dict[str, Any]:
        if not content or not content.strip():
            raise PermanentProviderFailure(f"{self.provider_name()} returned empty content", provider=self.provider_name())
        data = parse_json_response(content)
        if data is None:
            raise PermanentProviderFailure(
                f"{self.provider_name()} returned unparseable output: {content[:200]}",
                provider=self.provider_name(),
            )
        return data
