from __future__ import annotations

from collections.abc import AsyncIterator
from enum import Enum

import httpx
import structlog

from .channel import CompletionSender, completion_channel
from .contracts import CompletionRequest, PromptCompletionRequest
from .credentials import AzureOpenAIConfig
from .errors import (
    AuthenticationError,
    RateLimitError,
    TransportConfigurationError,
    TransportError,
    UnsupportedOperationError,
)
from .metrics import request_latency_seconds, requests_total
from .openai_compat import ChatCompletionChunk, ChatCompletionWireRequest, build_wire_request, is_done, parse_sse_line
from .streaming import StreamAggregator, first_choice_delta, strict_first_choice_delta

log = structlog.get_logger()

OPENAI_API_BASE = "https://api.openai.com/v1"


class BackendVariant(str, Enum):
    OPENAI = "openai"
    AZURE = "azure"


def _validated_base(raw: str) -> httpx.URL:
    try:
        url = httpx.URL(raw)
    except (httpx.InvalidURL, TypeError) as e:
        raise TransportConfigurationError(f"Malformed API base URL: {raw!r}") from e
    if url.scheme not in ("http", "https") or not url.host:
        raise TransportConfigurationError(f"API base URL must be absolute http(s): {raw!r}")
    return url


class ProviderClient:
    """
    One authenticated handle onto a chat-completion backend.

    The variant is fixed at construction; request framing and choice
    extraction are looked up from it. A handle owns its HTTP client and is
    meant to serve a single dispatch, after which `close()` releases it.
    """

    def __init__(
        self,
        variant: BackendVariant,
        *,
        url: str,
        model: str,
        headers: dict[str, str],
        params: dict[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 60,
    ):
        self.variant = variant
        self.model = model
        self._url = url
        self._headers = headers
        self._params = params or {}
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)

    @classmethod
    def openai(
        cls,
        api_key: str,
        *,
        model: str,
        api_base: str = OPENAI_API_BASE,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 60,
    ) -> "ProviderClient":
        base = _validated_base(api_base)
        if not api_key:
            raise TransportConfigurationError("Missing API key for OpenAI-compatible backend.")
        return cls(
            BackendVariant.OPENAI,
            url=str(base).rstrip("/") + "/chat/completions",
            model=model,
            headers={"Authorization": f"Bearer {api_key}"},
            client=client,
            timeout_seconds=timeout_seconds,
        )

    @classmethod
    def azure(
        cls,
        cfg: AzureOpenAIConfig,
        *,
        model: str,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 60,
    ) -> "ProviderClient":
        base = _validated_base(cfg.api_base)
        if not cfg.deployment_id or "/" in cfg.deployment_id:
            raise TransportConfigurationError(f"Invalid Azure deployment id: {cfg.deployment_id!r}")
        if not cfg.api_key:
            raise TransportConfigurationError("Missing API key for Azure deployment.")
        return cls(
            BackendVariant.AZURE,
            url=f"{str(base).rstrip('/')}/openai/deployments/{cfg.deployment_id}/chat/completions",
            model=model,
            headers={"api-key": cfg.api_key},
            params={"api-version": cfg.api_version},
            client=client,
            timeout_seconds=timeout_seconds,
        )

    async def close(self) -> None:
        await self._client.aclose()

    def build_request(self, request: CompletionRequest) -> ChatCompletionWireRequest:
        # Azure resolves the model from the deployment in the URL.
        model = self.model if self.variant is BackendVariant.OPENAI else None
        return build_wire_request(request, model=model)

    def extract_delta(self, chunk: ChatCompletionChunk) -> str:
        if self.variant is BackendVariant.AZURE:
            # Azure leads with a choice-less content filter chunk.
            return first_choice_delta(chunk)
        return strict_first_choice_delta(chunk)

    async def open_stream(self, request: ChatCompletionWireRequest) -> AsyncIterator[ChatCompletionChunk]:
        http_request = self._client.build_request(
            "POST",
            self._url,
            params=self._params or None,
            headers=self._headers,
            json=request.to_payload(),
        )
        try:
            resp = await self._client.send(http_request, stream=True)
        except httpx.TimeoutException as e:
            raise TransportError("Upstream request timed out.") from e
        except httpx.HTTPError as e:
            raise TransportError("Upstream request failed.") from e

        if resp.status_code >= 400:
            try:
                await resp.aread()
            except httpx.HTTPError as e:
                raise TransportError(
                    f"Upstream error {resp.status_code}; error body unreadable.",
                    status_code=resp.status_code,
                ) from e
            finally:
                await resp.aclose()
            raise self._status_error(resp)

        log.debug("llm_stream_opened", variant=self.variant.value, model=self.model)
        return self._iter_chunks(resp)

    def _status_error(self, resp: httpx.Response) -> TransportError:
        if resp.status_code in (401, 403):
            return AuthenticationError(status_code=resp.status_code)
        if resp.status_code == 429:
            retry_after = resp.headers.get("retry-after")
            retry_seconds = int(retry_after) if retry_after and retry_after.isdigit() else None
            return RateLimitError(retry_after_seconds=retry_seconds)
        if resp.status_code >= 500:
            log.warning(
                "llm_upstream_5xx",
                variant=self.variant.value,
                status_code=resp.status_code,
                body=resp.text[:500],
            )
        return TransportError(f"Upstream error {resp.status_code}.", status_code=resp.status_code)

    async def _iter_chunks(self, resp: httpx.Response) -> AsyncIterator[ChatCompletionChunk]:
        try:
            async for line in resp.aiter_lines():
                event = parse_sse_line(line)
                if event is None:
                    continue
                if is_done(event):
                    return
                yield event  # type: ignore[misc]
        except httpx.HTTPError as e:
            raise TransportError("Upstream stream interrupted.") from e
        finally:
            await resp.aclose()

    async def stream_completion(self, request: CompletionRequest, sender: CompletionSender) -> str:
        variant = self.variant.value
        try:
            wire = self.build_request(request)
            with request_latency_seconds.labels(variant=variant).time():
                chunks = await self.open_stream(wire)
                aggregator = StreamAggregator(
                    model=self.model,
                    sender=sender,
                    variant=variant,
                    extract_delta=self.extract_delta,
                )
                transcript = await aggregator.run(chunks)
        except Exception:
            requests_total.labels(variant=variant, status="error").inc()
            raise
        finally:
            sender.close()
        requests_total.labels(variant=variant, status="success").inc()
        return transcript

    async def completion(self, request: CompletionRequest) -> str:
        sender, receiver = completion_channel()
        receiver.close()
        return await self.stream_completion(request, sender)

    async def stream_prompt_completion(self, request: PromptCompletionRequest, sender: CompletionSender) -> str:
        sender.close()
        raise UnsupportedOperationError(
            f"The {self.variant.value} backend only serves chat completions; prompt completion is not supported."
        )
