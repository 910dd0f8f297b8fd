"""
cachewatch - Remote API client
Chat completions, model listing and balance lookup against an
OpenAI-compatible endpoint
"""
import json
import logging
import math
import re
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
from openai import AsyncOpenAI

from .config import MonitorConfig
from .core import CallError, ErrorKind, Model, UsageSample
from .prompts import isolate
from .retry import classify_exception, is_retryable, with_retry

logger = logging.getLogger(__name__)

CACHE_CONTROL = {"type": "ephemeral"}
VENDOR_PARAMETERS = {"venice_parameters": {"include_venice_system_prompt": False}}


def generate_request_id() -> str:
    return uuid.uuid4().hex[:8]


@dataclass
class ChatRequest:
    """A single cache probe request: system prompt + user message"""
    model_id: str
    system_prompt: str
    user_message: str
    max_tokens: int = 50
    cache_control_placement: str = "system"
    isolation_token: Optional[str] = None
    correlation_id: Optional[str] = None
    request_id: str = field(default_factory=generate_request_id)

    def messages(self) -> List[Dict[str, Any]]:
        system_prompt = self.system_prompt
        if self.isolation_token:
            system_prompt = isolate(system_prompt, self.isolation_token)

        system = {"role": "system", "content": system_prompt}
        user = {"role": "user", "content": self.user_message}
        if self.cache_control_placement in ("system", "both"):
            system["cache_control"] = dict(CACHE_CONTROL)
        if self.cache_control_placement in ("user", "both"):
            user["cache_control"] = dict(CACHE_CONTROL)
        return [system, user]

    def build_payload(self) -> Dict[str, Any]:
        """Request body as sent on the wire"""
        return {
            "model": self.model_id,
            "messages": self.messages(),
            "max_tokens": self.max_tokens,
            "venice_parameters": dict(VENDOR_PARAMETERS["venice_parameters"]),
        }


def extract_usage(usage: Optional[Dict[str, Any]]) -> UsageSample:
    """Token counts from a completion's usage block"""
    usage = usage or {}
    details = usage.get("prompt_tokens_details") or {}
    cached = details.get("cached_tokens")
    if cached is None:
        cached = usage.get("cached_tokens")
    return UsageSample(
        prompt_tokens=usage.get("prompt_tokens") or 0,
        cached_tokens=cached or 0,
        completion_tokens=usage.get("completion_tokens") or 0,
    )


def parse_balance(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        balance = float(value)
    except ValueError:
        return None
    return None if math.isnan(balance) else balance


def describe_non_json(response: httpx.Response) -> str:
    """Diagnostics for a body that is not JSON (proxy error pages etc.)"""
    content_type = response.headers.get("content-type", "")
    text = response.text
    message = f"Non-JSON response (status {response.status_code}, content-type: {content_type or 'none'})"

    cf_ray = response.headers.get("cf-ray")
    if cf_ray:
        message += f"\n  Cloudflare Ray ID: {cf_ray}"
    cf_cache = response.headers.get("cf-cache-status")
    if cf_cache:
        message += f"\n  CF Cache Status: {cf_cache}"

    stripped = text.lstrip()
    if stripped.startswith("<!") or stripped.lower().startswith("<html"):
        title = re.search(r"<title[^>]*>([^<]+)</title>", text, re.IGNORECASE)
        if title:
            message += f"\n  Page Title: {title.group(1).strip()}"
        if "challenge-platform" in text or "cf-browser-verification" in text:
            message += "\n  Likely Cause: Cloudflare browser challenge (bot detection)"
        elif "rate limit" in text.lower():
            message += "\n  Likely Cause: Rate limiting"
        elif "Access denied" in text or "403" in text:
            message += "\n  Likely Cause: Access denied / Forbidden"
        message += f"\n  Body Preview (first 500 chars):\n{text[:500]}"
    else:
        message += f"\n  Body: {text[:1000]}"
    return message


def parse_json_response(response: httpx.Response) -> Dict[str, Any]:
    content_type = response.headers.get("content-type", "")
    if "application/json" not in content_type:
        raise CallError(describe_non_json(response), ErrorKind.API_ERROR, response.status_code)
    try:
        data = response.json()
    except ValueError as e:
        raise CallError(f"Malformed JSON body: {e}", ErrorKind.API_ERROR, response.status_code)
    if not isinstance(data, dict):
        raise CallError(f"Unexpected JSON body: {type(data).__name__}", ErrorKind.API_ERROR, response.status_code)
    return data


class ApiClient:
    """Thin async client over the inference API"""

    def __init__(self, config: MonitorConfig, http_client: Optional[httpx.AsyncClient] = None,
                 telemetry=None):
        self.config = config
        self.telemetry = telemetry
        self.headers = {"Authorization": f"Bearer {config.api_key}"}
        self.http = http_client or httpx.AsyncClient(timeout=config.request_timeout)
        self.openai = AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            max_retries=0,
            timeout=config.request_timeout,
            http_client=self.http,
        )

    async def __aenter__(self) -> 'ApiClient':
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def aclose(self):
        await self.http.aclose()

    def _record(self, endpoint: str, started: float, status: int):
        if self.telemetry is not None:
            self.telemetry.record_api_response(endpoint, time.monotonic() - started, status)

    def _debug(self, message: str, *args):
        if self.config.debug_api_requests:
            logger.info(message, *args)

    async def chat_completion(self, request: ChatRequest, timeout: float) -> UsageSample:
        """One attempt, no retries. Raises CallError on any failure."""
        payload = request.build_payload()
        url = self.config.get_api_url("chat/completions")
        self._debug("[%s] API POST %s %s", request.request_id, url, json.dumps(payload))

        extra_headers = {}
        if request.correlation_id:
            extra_headers["X-Correlation-Id"] = request.correlation_id

        started = time.monotonic()
        status = 0
        try:
            raw = await self.openai.chat.completions.with_raw_response.create(
                model=request.model_id,
                messages=payload["messages"],
                max_tokens=request.max_tokens,
                extra_body=VENDOR_PARAMETERS,
                extra_headers=extra_headers,
                timeout=timeout,
            )
            response = raw.http_response
            status = response.status_code
            data = parse_json_response(response)
        except Exception as e:
            status = getattr(e, "status_code", None) or status
            error = classify_exception(e, request.request_id)
            self._debug("[%s] API response error: %s", request.request_id, error)
            if error is e:
                raise
            raise error from e
        finally:
            self._record("chat_completions", started, status)

        usage = extract_usage(data.get("usage"))
        usage.balance = parse_balance(response.headers.get(self.config.balance_header))
        self._debug("[%s] API response %d: tokens=%d cached=%d",
                    request.request_id, status, usage.prompt_tokens, usage.cached_tokens)
        return usage

    async def _get_models_response(self) -> httpx.Response:
        return await self.http.get(self.config.get_api_url("models"), headers=self.headers,
                                   timeout=self.config.request_timeout)

    async def list_models(self, model_type: str = "text") -> List[Model]:
        """Models of the given type, retried on rate limits and timeouts"""
        request_id = generate_request_id()
        self._debug("[%s] API GET %s", request_id, self.config.get_api_url("models"))

        async def fetch(attempt: int) -> Dict[str, Any]:
            started = time.monotonic()
            status = 0
            try:
                response = await self._get_models_response()
                status = response.status_code
                response.raise_for_status()
                return parse_json_response(response)
            except CallError:
                raise
            except Exception as e:
                raise classify_exception(e, request_id) from e
            finally:
                self._record("models", started, status)

        try:
            data = await with_retry(
                fetch,
                max_retries=self.config.max_retries,
                initial_delay=self.config.retry_delay,
                should_retry=lambda e, attempt: is_retryable(e) and e.kind != ErrorKind.SERVER_ERROR,
            )
        except CallError as e:
            if self.telemetry is not None:
                self.telemetry.record_error(e.kind)
            raise

        items = data.get("data") if isinstance(data, dict) else None
        if not isinstance(items, list):
            logger.warning("Model listing has no data array")
            items = []

        models = []
        for item in items:
            if not isinstance(item, dict) or "id" not in item:
                continue
            try:
                model = Model.from_api(item)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning("Skipping malformed model entry %r: %s", item.get("id"), e)
                continue
            if model_type is None or model.type == model_type:
                models.append(model)
        return models

    async def get_balance(self) -> Optional[float]:
        """Current account balance from the response header, None when unavailable"""
        started = time.monotonic()
        status = 0
        try:
            response = await self._get_models_response()
            status = response.status_code
        except Exception as e:
            error = classify_exception(e)
            if self.telemetry is not None:
                self.telemetry.record_error(error.kind)
            logger.warning("Balance lookup failed: %s", error)
            return None
        finally:
            self._record("balance", started, status)

        if not response.is_success:
            if self.telemetry is not None:
                self.telemetry.record_error(ErrorKind.API_ERROR)
            logger.warning("Balance lookup failed: HTTP %d", response.status_code)
            return None
        return parse_balance(response.headers.get(self.config.balance_header))
