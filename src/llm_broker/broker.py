from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field

import structlog

from .channel import CompletionSender, completion_channel
from .config import BrokerConfig, ModelSelection
from .contracts import CompletionRequest
from .credentials import CredentialBundle
from .errors import ClientError
from .logging import configure_logging
from .metrics import dispatch_inflight, maybe_start_metrics
from .models import LLMType
from .provider import ProviderClient
from .resolver import check_request, resolve

log = structlog.get_logger()

ClientFactory = Callable[[CredentialBundle, LLMType], ProviderClient]


@dataclass(frozen=True)
class DispatchItem:
    request: CompletionRequest
    credentials: CredentialBundle
    metadata: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class DispatchResult:
    index: int
    metadata: Mapping[str, str]
    transcript: str | None = None
    error: ClientError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class LLMBroker:
    """
    Entry point for callers that want completions without caring which
    backend serves them.

    Every call resolves a fresh provider handle from the credentials it is
    given and closes it when the call ends; nothing is pooled or cached.
    """

    def __init__(
        self,
        cfg: BrokerConfig | None = None,
        *,
        selection: ModelSelection | None = None,
        client_factory: ClientFactory | None = None,
    ):
        self.cfg = cfg or BrokerConfig()
        self.selection = selection
        self._client_factory = client_factory

    def _client_for(self, credentials: CredentialBundle, model: LLMType) -> ProviderClient:
        if self._client_factory is not None:
            return self._client_factory(credentials, model)
        return resolve(credentials, model, cfg=self.cfg, selection=self.selection)

    async def stream_completion(
        self,
        credentials: CredentialBundle,
        request: CompletionRequest,
        metadata: Mapping[str, str] | None,
        sender: CompletionSender,
    ) -> str:
        with structlog.contextvars.bound_contextvars(**dict(metadata or {})):
            # Request faults are reported before credential faults.
            try:
                check_request(request)
                client = self._client_for(credentials, request.model)
            except BaseException:
                sender.close()
                raise
            try:
                return await client.stream_completion(request, sender)
            finally:
                await client.close()

    async def completion(
        self,
        credentials: CredentialBundle,
        request: CompletionRequest,
        metadata: Mapping[str, str] | None = None,
    ) -> str:
        sender, receiver = completion_channel()
        receiver.close()
        return await self.stream_completion(credentials, request, metadata, sender)

    async def dispatch_all(
        self,
        items: Sequence[DispatchItem],
        concurrency_limit: int | None = None,
    ) -> list[DispatchResult]:
        """
        Run every item to completion with at most `concurrency_limit` in flight.

        Results come back in completion order, one per item; use
        `DispatchResult.index` to map them to inputs. A failing item is
        reported in its result and never affects its siblings.
        """
        limit = self.cfg.dispatch_concurrency if concurrency_limit is None else concurrency_limit
        if limit < 1:
            raise ValueError("concurrency_limit must be >= 1.")

        gate = asyncio.Semaphore(limit)
        started = time.monotonic()

        async def _run(index: int, item: DispatchItem) -> DispatchResult:
            async with gate:
                dispatch_inflight.inc()
                try:
                    transcript = await self.completion(item.credentials, item.request, item.metadata)
                except ClientError as e:
                    log.warning(
                        "llm_dispatch_failed",
                        index=index,
                        error_type=type(e).__name__,
                        error=str(e),
                        metadata=dict(item.metadata),
                    )
                    return DispatchResult(index=index, metadata=item.metadata, error=e)
                finally:
                    dispatch_inflight.dec()
            return DispatchResult(index=index, metadata=item.metadata, transcript=transcript)

        tasks = [asyncio.create_task(_run(i, item)) for i, item in enumerate(items)]
        results: list[DispatchResult] = []
        try:
            for next_done in asyncio.as_completed(tasks):
                results.append(await next_done)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        log.info(
            "llm_dispatch_batch_done",
            total=len(results),
            failed=sum(1 for r in results if not r.ok),
            elapsed_seconds=round(time.monotonic() - started, 3),
        )
        return results


def bootstrap(
    cfg: BrokerConfig | None = None,
    *,
    secrets: Sequence[str] = (),
    selection: ModelSelection | None = None,
    client_factory: ClientFactory | None = None,
) -> LLMBroker:
    cfg = cfg or BrokerConfig()
    configure_logging(level=cfg.log_level, fmt=cfg.log_format, secrets=[s for s in secrets if s])
    maybe_start_metrics(enable=cfg.enable_metrics, bind=cfg.metrics_bind, port=cfg.metrics_port)
    return LLMBroker(cfg, selection=selection, client_factory=client_factory)
