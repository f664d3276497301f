from __future__ import annotations

import httpx

from .config import BrokerConfig, ModelSelection
from .contracts import CompletionRequest
from .credentials import CredentialBundle
from .errors import UnsupportedModelError, WrongCredentialTypeError
from .models import MODEL_TABLE, PINNED_OPENAI_COMPATIBLE, BackendFamily, LLMType
from .openai_compat import build_wire_request
from .provider import ProviderClient


def check_request(request: CompletionRequest) -> str:
    """
    Validate `request` without touching credentials or the network.

    Raises UnsupportedModelError for an unmapped model, then
    FunctionCallMissingError / InvalidRequestError for the messages and
    sampling parameters. Returns the backend model string.
    """
    backend_model = MODEL_TABLE.get(request.model)
    if backend_model is None:
        raise UnsupportedModelError(request.model)
    build_wire_request(request, model=backend_model)
    return backend_model


def resolve(
    credentials: CredentialBundle,
    model: LLMType,
    *,
    cfg: BrokerConfig | None = None,
    selection: ModelSelection | None = None,
    client: httpx.AsyncClient | None = None,
) -> ProviderClient:
    """
    Pick and authenticate the backend that serves `model` with `credentials`.

    Order matters: an unmapped model is reported before any credential
    mismatch, and pinned routes win over the bundle's own family. When a
    `selection` configures a provider family for `model`, the bundle must
    belong to it.
    """
    cfg = cfg or BrokerConfig()
    backend_model = MODEL_TABLE.get(model)
    if backend_model is None:
        raise UnsupportedModelError(model)

    pinned = PINNED_OPENAI_COMPATIBLE.get(model)
    if pinned is not None:
        if credentials.family is not pinned:
            raise WrongCredentialTypeError(
                f"{model.value} is served through an OpenAI-compatible endpoint and needs "
                f"{pinned.value} credentials, got {credentials.family.value}."
            )
        return ProviderClient.openai(
            credentials.api_key,
            model=backend_model,
            api_base=credentials.api_base,  # type: ignore[union-attr]
            client=client,
            timeout_seconds=cfg.upstream_timeout_seconds,
        )

    configured = selection.family_for(model) if selection is not None else None
    if configured is not None and credentials.family is not configured:
        raise WrongCredentialTypeError(
            f"{model.value} is configured for {configured.value} credentials, got {credentials.family.value}."
        )

    if credentials.family is BackendFamily.OPENAI:
        return ProviderClient.openai(
            credentials.api_key,
            model=backend_model,
            api_base=cfg.openai_api_base,
            client=client,
            timeout_seconds=cfg.upstream_timeout_seconds,
        )
    if credentials.family is BackendFamily.AZURE:
        return ProviderClient.azure(
            credentials,  # type: ignore[arg-type]
            model=backend_model,
            client=client,
            timeout_seconds=cfg.upstream_timeout_seconds,
        )
    raise WrongCredentialTypeError(
        f"{model.value} is served by OpenAI or Azure backends, got {credentials.family.value} credentials."
    )
