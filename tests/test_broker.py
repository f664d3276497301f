import asyncio
import json
import random

import httpx
import pytest

from llm_broker.broker import DispatchItem, LLMBroker, bootstrap
from llm_broker.channel import completion_channel
from llm_broker.config import BrokerConfig, ModelSelection, ModelSettings
from llm_broker.contracts import ChatMessage, CompletionRequest
from llm_broker.credentials import AnthropicKey, OpenAIKey
from llm_broker.errors import FunctionCallMissingError, TransportError, UnsupportedModelError, WrongCredentialTypeError
from llm_broker.models import MODEL_TABLE, BackendFamily, LLMType
from llm_broker.provider import ProviderClient

KEY = OpenAIKey(api_key="sk-test")


def _sse(*deltas: str) -> str:
    lines = ["data: " + json.dumps({"choices": [{"index": 0, "delta": {"content": d}}]}) for d in deltas]
    lines.append("data: [DONE]")
    return "\n\n".join(lines) + "\n\n"


def _factory(handler):
    def make(credentials, model):
        return ProviderClient.openai(
            credentials.api_key,
            model=MODEL_TABLE[model],
            api_base="https://example.test/v1",
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )

    return make


def _item(text: str, model: LLMType = LLMType.GPT4O_MINI, credentials=KEY) -> DispatchItem:
    return DispatchItem(
        request=CompletionRequest(model=model, messages=[ChatMessage.user(text)], temperature=0.2),
        credentials=credentials,
        metadata={"event_type": "filter_references", "root_id": "root-1"},
    )


def _last_user_content(request: httpx.Request) -> str:
    return json.loads(request.content.decode("utf-8"))["messages"][-1]["content"]


class _ResetBody(httpx.AsyncByteStream):
    async def __aiter__(self):
        yield b"partial"
        raise httpx.ReadError("connection reset")


@pytest.mark.asyncio
async def test_dispatch_all_respects_concurrency_limit():
    state = {"open": 0, "peak": 0, "calls": 0}

    async def handler(request: httpx.Request) -> httpx.Response:
        state["open"] += 1
        state["calls"] += 1
        state["peak"] = max(state["peak"], state["open"])
        try:
            await asyncio.sleep(random.uniform(0, 0.004))
        finally:
            state["open"] -= 1
        return httpx.Response(200, text=_sse("re:", _last_user_content(request)))

    broker = LLMBroker(BrokerConfig(), client_factory=_factory(handler))
    items = [_item(str(i)) for i in range(500)]

    results = await broker.dispatch_all(items, concurrency_limit=50)

    assert len(results) == 500
    assert sorted(r.index for r in results) == list(range(500))
    assert all(r.ok for r in results)
    assert all(r.transcript == f"re:{r.index}" for r in results)
    assert state["calls"] == 500
    assert state["peak"] <= 50


@pytest.mark.asyncio
async def test_one_transport_failure_does_not_affect_siblings():
    def handler(request: httpx.Request) -> httpx.Response:
        text = _last_user_content(request)
        if text == "3":
            return httpx.Response(500, text="boom")
        return httpx.Response(200, text=_sse(text.upper(), "!"))

    broker = LLMBroker(BrokerConfig(), client_factory=_factory(handler))
    items = [_item(s) for s in ("a", "b", "c", "3", "d")]

    results = {r.index: r for r in await broker.dispatch_all(items, concurrency_limit=2)}

    assert isinstance(results[3].error, TransportError)
    assert results[3].transcript is None
    assert [results[i].transcript for i in (0, 1, 2, 4)] == ["A!", "B!", "C!", "D!"]
    assert results[3].metadata["root_id"] == "root-1"


@pytest.mark.asyncio
async def test_unreadable_error_body_fails_only_its_own_item():
    def handler(request: httpx.Request) -> httpx.Response:
        text = _last_user_content(request)
        if text == "b":
            return httpx.Response(502, stream=_ResetBody())
        return httpx.Response(200, text=_sse(text))

    broker = LLMBroker(BrokerConfig(), client_factory=_factory(handler))
    items = [_item(s) for s in ("a", "b", "c")]

    results = {r.index: r for r in await broker.dispatch_all(items, concurrency_limit=1)}

    assert isinstance(results[1].error, TransportError)
    assert results[1].error.status_code == 502
    assert results[0].transcript == "a"
    assert results[2].transcript == "c"


@pytest.mark.asyncio
async def test_dispatch_all_reports_resolution_errors_per_item():
    broker = LLMBroker(BrokerConfig())
    items = [_item("x", model=LLMType.CLAUDE_SONNET, credentials=AnthropicKey(api_key="ant"))]

    results = await broker.dispatch_all(items, concurrency_limit=1)

    assert len(results) == 1
    assert isinstance(results[0].error, UnsupportedModelError)


@pytest.mark.asyncio
async def test_dispatch_all_rejects_non_positive_limit():
    broker = LLMBroker(BrokerConfig())
    with pytest.raises(ValueError):
        await broker.dispatch_all([_item("x")], concurrency_limit=0)


@pytest.mark.asyncio
async def test_dispatch_all_uses_configured_default_limit():
    state = {"open": 0, "peak": 0}

    async def handler(request: httpx.Request) -> httpx.Response:
        state["open"] += 1
        state["peak"] = max(state["peak"], state["open"])
        await asyncio.sleep(0.001)
        state["open"] -= 1
        return httpx.Response(200, text=_sse("ok"))

    broker = LLMBroker(BrokerConfig(dispatch_concurrency=3), client_factory=_factory(handler))
    results = await broker.dispatch_all([_item(str(i)) for i in range(20)])

    assert len(results) == 20
    assert state["peak"] <= 3


@pytest.mark.asyncio
async def test_stream_completion_publishes_snapshots_to_caller_channel():
    broker = LLMBroker(BrokerConfig(), client_factory=_factory(lambda _: httpx.Response(200, text=_sse("Hel", "lo"))))
    sender, receiver = completion_channel()

    out = await broker.stream_completion(KEY, _item("hi").request, {"event_type": "edit"}, sender)

    assert out == "Hello"
    assert [r.latest_delta async for r in receiver] == ["Hel", "lo"]


@pytest.mark.asyncio
async def test_stream_completion_closes_channel_when_resolution_fails():
    broker = LLMBroker(BrokerConfig())
    sender, receiver = completion_channel()

    with pytest.raises(UnsupportedModelError):
        await broker.stream_completion(KEY, _item("x", model=LLMType.MIXTRAL).request, None, sender)

    assert await receiver.recv() is None


def test_bootstrap_returns_broker_with_given_config():
    cfg = BrokerConfig(enable_metrics=False, log_format="console", dispatch_concurrency=4)
    broker = bootstrap(cfg, secrets=["sk-test", ""])
    assert broker.cfg is cfg


@pytest.mark.asyncio
async def test_message_faults_are_reported_before_credential_mismatch():
    calls = []

    def factory(credentials, model):
        calls.append(model)
        raise AssertionError("client must not be built for an invalid request")

    broker = LLMBroker(BrokerConfig(), client_factory=factory)
    request = CompletionRequest(
        model=LLMType.GPT4O,
        messages=[ChatMessage.user("hi"), ChatMessage.function("out", None)],
        temperature=0.2,
    )
    sender, receiver = completion_channel()

    with pytest.raises(FunctionCallMissingError):
        await broker.stream_completion(AnthropicKey(api_key="ant"), request, None, sender)

    assert calls == []
    assert await receiver.recv() is None


@pytest.mark.asyncio
async def test_stream_completion_closes_channel_when_client_factory_breaks():
    def factory(credentials, model):
        raise RuntimeError("factory misconfigured")

    broker = LLMBroker(BrokerConfig(), client_factory=factory)
    sender, receiver = completion_channel()

    with pytest.raises(RuntimeError):
        await broker.stream_completion(KEY, _item("x").request, None, sender)

    assert sender.closed
    assert await receiver.recv() is None


@pytest.mark.asyncio
async def test_model_selection_provider_is_enforced_per_item():
    selection = ModelSelection(
        slow_model=LLMType.GPT4,
        fast_model=LLMType.GPT4O_MINI,
        models={
            LLMType.GPT4O_MINI: ModelSettings(context_length=128000, temperature=0.2, provider=BackendFamily.AZURE),
        },
    )
    broker = LLMBroker(BrokerConfig(), selection=selection)

    results = await broker.dispatch_all([_item("x")], concurrency_limit=1)

    assert isinstance(results[0].error, WrongCredentialTypeError)
