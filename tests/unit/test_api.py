"""
Tests for the API client against an in-process mock transport.
"""

import json

import httpx
import pytest

from cachewatch.api import (
    ApiClient,
    ChatRequest,
    describe_non_json,
    extract_usage,
    parse_balance,
)
from cachewatch.core import CallError, ErrorKind
from cachewatch.telemetry import TelemetryCollector

COMPLETION = {
    "id": "chatcmpl-1",
    "object": "chat.completion",
    "created": 1700000000,
    "model": "llama-3.3-70b",
    "choices": [{"index": 0, "message": {"role": "assistant", "content": "Hello!"}, "finish_reason": "stop"}],
    "usage": {
        "prompt_tokens": 1000,
        "completion_tokens": 4,
        "total_tokens": 1004,
        "prompt_tokens_details": {"cached_tokens": 800},
    },
}

MODELS = {
    "object": "list",
    "data": [
        {"id": "llama-3.3-70b", "type": "text", "model_spec": {"name": "Llama 3.3 70B"}},
        {"id": "qwen3-235b", "type": "text"},
        {"id": "flux-dev", "type": "image", "model_spec": {"name": "FLUX"}},
        {"type": "text", "model_spec": {"name": "no id"}},
    ],
}


def make_client(config, handler, telemetry=None) -> ApiClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ApiClient(config, http_client=http, telemetry=telemetry)


def request(**kwargs) -> ChatRequest:
    values = dict(model_id="llama-3.3-70b", system_prompt="Reference text.", user_message="Say hello.",
                  isolation_token="run-token", correlation_id="run-token", request_id="req00001")
    values.update(kwargs)
    return ChatRequest(**values)


# =============================================================================
# Request building
# =============================================================================

class TestChatRequest:

    def test_cache_control_on_system_message(self):
        messages = request().messages()
        assert messages[0]["cache_control"] == {"type": "ephemeral"}
        assert "cache_control" not in messages[1]

    def test_cache_control_on_both(self):
        messages = request(cache_control_placement="both").messages()
        assert all(m["cache_control"] == {"type": "ephemeral"} for m in messages)

    def test_isolation_token_appended_to_system_prompt(self):
        content = request().messages()[0]["content"]
        assert content == "Reference text.\n\n<!-- Test Run: run-token -->"

    def test_no_token_leaves_prompt_untouched(self):
        assert request(isolation_token=None).messages()[0]["content"] == "Reference text."

    def test_payload_carries_vendor_parameters(self):
        payload = request().build_payload()
        assert payload["venice_parameters"] == {"include_venice_system_prompt": False}
        assert payload["max_tokens"] == 50


def test_extract_usage_prefers_details():
    usage = extract_usage({"prompt_tokens": 10, "prompt_tokens_details": {"cached_tokens": 7}, "cached_tokens": 1})
    assert usage.cached_tokens == 7


def test_extract_usage_falls_back_to_top_level():
    usage = extract_usage({"prompt_tokens": 10, "cached_tokens": 4, "completion_tokens": 2})
    assert (usage.prompt_tokens, usage.cached_tokens, usage.completion_tokens) == (10, 4, 2)


def test_extract_usage_missing_block():
    usage = extract_usage(None)
    assert usage.prompt_tokens == 0 and usage.cached_tokens == 0


@pytest.mark.parametrize("raw,expected", [("12.5", 12.5), ("0", 0.0), ("", None), (None, None),
                                          ("abc", None), ("nan", None)])
def test_parse_balance(raw, expected):
    assert parse_balance(raw) == expected


def test_describe_non_json_cloudflare_page():
    response = httpx.Response(
        403,
        headers={"content-type": "text/html", "cf-ray": "8a1b2c3d4e5f-AMS"},
        text="<!DOCTYPE html><html><head><title>Just a moment...</title></head>"
             "<body><div id='challenge-platform'></div></body></html>",
    )
    message = describe_non_json(response)
    assert "status 403" in message
    assert "Cloudflare Ray ID: 8a1b2c3d4e5f-AMS" in message
    assert "Page Title: Just a moment..." in message
    assert "Cloudflare browser challenge" in message


# =============================================================================
# Chat completions
# =============================================================================

class TestChatCompletion:

    async def test_success_reads_usage_and_balance(self, config):
        seen = []

        def handler(req: httpx.Request) -> httpx.Response:
            seen.append(req)
            return httpx.Response(200, json=COMPLETION, headers={"x-venice-balance-diem": "42.125"})

        telemetry = TelemetryCollector()
        async with make_client(config, handler, telemetry) as client:
            usage = await client.chat_completion(request(), 30)

        assert usage.prompt_tokens == 1000
        assert usage.cached_tokens == 800
        assert usage.completion_tokens == 4
        assert usage.balance == 42.125

        sent = seen[0]
        assert sent.url.path == "/api/v1/chat/completions"
        assert sent.headers["authorization"] == "Bearer test-key"
        assert sent.headers["x-correlation-id"] == "run-token"
        body = json.loads(sent.content)
        assert body["venice_parameters"] == {"include_venice_system_prompt": False}
        assert body["messages"][0]["cache_control"] == {"type": "ephemeral"}
        assert "chat_completions:200" in telemetry.api_response_times

    async def test_bad_request_is_api_error(self, config):
        calls = []

        def handler(req):
            calls.append(req)
            return httpx.Response(400, json={"error": {"message": "bad model"}})

        async with make_client(config, handler) as client:
            with pytest.raises(CallError) as info:
                await client.chat_completion(request(), 30)

        assert info.value.kind == ErrorKind.API_ERROR
        assert info.value.status_code == 400
        assert str(info.value) == "[req00001] HTTP 400"
        assert len(calls) == 1

    @pytest.mark.parametrize("status,kind", [(429, ErrorKind.RATE_LIMIT), (500, ErrorKind.SERVER_ERROR),
                                             (502, ErrorKind.SERVER_ERROR)])
    async def test_transient_statuses(self, config, status, kind):
        def handler(req):
            return httpx.Response(status, json={"error": {"message": "try later"}})

        async with make_client(config, handler) as client:
            with pytest.raises(CallError) as info:
                await client.chat_completion(request(), 30)
        assert info.value.kind == kind
        assert info.value.retryable

    async def test_html_body_is_api_error_with_diagnostics(self, config):
        def handler(req):
            return httpx.Response(200, headers={"content-type": "text/html"},
                                  text="<html><head><title>Bad Gateway</title></head></html>")

        async with make_client(config, handler) as client:
            with pytest.raises(CallError) as info:
                await client.chat_completion(request(), 30)
        assert info.value.kind == ErrorKind.API_ERROR
        assert "Non-JSON response" in str(info.value)
        assert "Page Title: Bad Gateway" in str(info.value)

    async def test_timeout(self, config):
        def handler(req):
            raise httpx.ReadTimeout("timed out", request=req)

        async with make_client(config, handler) as client:
            with pytest.raises(CallError) as info:
                await client.chat_completion(request(), 30)
        assert info.value.kind == ErrorKind.TIMEOUT

    async def test_connection_error_is_server_error(self, config):
        def handler(req):
            raise httpx.ConnectError("connection refused", request=req)

        async with make_client(config, handler) as client:
            with pytest.raises(CallError) as info:
                await client.chat_completion(request(), 30)
        assert info.value.kind == ErrorKind.SERVER_ERROR


# =============================================================================
# Models and balance
# =============================================================================

class TestListModels:

    async def test_filters_by_type_and_skips_items_without_id(self, config):
        async with make_client(config, lambda req: httpx.Response(200, json=MODELS)) as client:
            models = await client.list_models("text")

        assert [m.id for m in models] == ["llama-3.3-70b", "qwen3-235b"]
        assert models[0].display_name == "Llama 3.3 70B"
        assert models[1].display_name == "qwen3-235b"

    async def test_malformed_model_spec_is_tolerated(self, config):
        listing = {"data": [
            {"id": "x", "type": "text", "model_spec": "oops"},
            {"id": "y", "type": "text", "model_spec": ["not", "a", "dict"], "name": "Why"},
            {"id": "z", "type": "text", "model_spec": None},
        ]}
        async with make_client(config, lambda req: httpx.Response(200, json=listing)) as client:
            models = await client.list_models("text")

        assert [(m.id, m.display_name) for m in models] == [("x", "x"), ("y", "Why"), ("z", "z")]

    async def test_non_list_data_yields_no_models(self, config):
        async with make_client(config, lambda req: httpx.Response(200, json={"data": "nope"})) as client:
            assert await client.list_models("text") == []

    async def test_rate_limit_is_retried(self, config):
        responses = [httpx.Response(429, json={}), httpx.Response(200, json=MODELS)]

        async with make_client(config, lambda req: responses.pop(0)) as client:
            models = await client.list_models("text")
        assert len(models) == 2
        assert responses == []

    async def test_server_error_is_not_retried(self, config):
        calls = []

        def handler(req):
            calls.append(req)
            return httpx.Response(503, json={})

        telemetry = TelemetryCollector()
        async with make_client(config, handler, telemetry) as client:
            with pytest.raises(CallError) as info:
                await client.list_models("text")
        assert info.value.kind == ErrorKind.SERVER_ERROR
        assert len(calls) == 1
        assert telemetry.error_counts() == {"server_error": 1}


class TestGetBalance:

    async def test_reads_header(self, config):
        def handler(req):
            return httpx.Response(200, json=MODELS, headers={"x-venice-balance-diem": "3.5"})

        async with make_client(config, handler) as client:
            assert await client.get_balance() == 3.5

    async def test_missing_header(self, config):
        async with make_client(config, lambda req: httpx.Response(200, json=MODELS)) as client:
            assert await client.get_balance() is None

    async def test_error_status_returns_none(self, config):
        def handler(req):
            return httpx.Response(401, json={}, headers={"x-venice-balance-diem": "3.5"})

        async with make_client(config, handler) as client:
            assert await client.get_balance() is None

    async def test_network_failure_returns_none(self, config):
        def handler(req):
            raise httpx.ConnectError("unreachable", request=req)

        telemetry = TelemetryCollector()
        async with make_client(config, handler, telemetry) as client:
            assert await client.get_balance() is None
        assert telemetry.error_counts() == {"server_error": 1}
