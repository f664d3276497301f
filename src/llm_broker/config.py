from __future__ import annotations

import os
from collections.abc import Sequence
from typing import Any

from pydantic import BaseModel, Field, field_validator

from .contracts import ChatMessage, CompletionRequest
from .credentials import CredentialBundle, credentials_from_dict
from .errors import TransportConfigurationError, UnsupportedModelError
from .models import BackendFamily, LLMType


class BrokerConfig(BaseModel):
    # Observability
    enable_metrics: bool = Field(
        default_factory=lambda: os.getenv("ENABLE_METRICS", "false").lower() == "true"
    )
    metrics_bind: str = Field(default_factory=lambda: os.getenv("METRICS_BIND", "127.0.0.1"))
    metrics_port: int = Field(default_factory=lambda: int(os.getenv("METRICS_PORT", "9109")))
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_format: str = Field(default_factory=lambda: os.getenv("LOG_FORMAT", "json"))

    # Upstream
    openai_api_base: str = Field(
        default_factory=lambda: os.getenv("OPENAI_API_BASE", "https://api.openai.com/v1")
    )
    upstream_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("UPSTREAM_TIMEOUT_SECONDS", "60"))
    )

    # Fan-out
    dispatch_concurrency: int = Field(default_factory=lambda: int(os.getenv("DISPATCH_CONCURRENCY", "50")))

    @field_validator("dispatch_concurrency")
    @classmethod
    def _validate_dispatch_concurrency(cls, v: int) -> int:
        if v < 1:
            raise ValueError("dispatch_concurrency must be >= 1.")
        return v


class ModelSettings(BaseModel):
    context_length: int
    temperature: float
    provider: BackendFamily


class ModelSelection(BaseModel):
    """Which logical models the caller uses, and the credentials on hand for them."""

    slow_model: LLMType
    fast_model: LLMType
    models: dict[LLMType, ModelSettings]
    providers: list[Any] = Field(default_factory=list)

    @field_validator("providers", mode="before")
    @classmethod
    def _parse_providers(cls, v: Any) -> list[CredentialBundle]:
        if v is None:
            return []
        try:
            return [credentials_from_dict(p) if isinstance(p, dict) else p for p in v]
        except TransportConfigurationError as e:
            raise ValueError(str(e)) from e

    def _provider_for(self, model: LLMType) -> CredentialBundle | None:
        settings = self.models.get(model)
        if settings is None:
            return None
        for bundle in self.providers:
            if bundle.family == settings.provider:
                return bundle
        return None

    def provider_for_slow_model(self) -> CredentialBundle | None:
        return self._provider_for(self.slow_model)

    def provider_for_fast_model(self) -> CredentialBundle | None:
        return self._provider_for(self.fast_model)

    def family_for(self, model: LLMType) -> BackendFamily | None:
        settings = self.models.get(model)
        return settings.provider if settings is not None else None

    def request_for(
        self,
        model: LLMType,
        messages: Sequence[ChatMessage],
        *,
        frequency_penalty: float | None = None,
    ) -> CompletionRequest:
        """Build a request for `model` at its configured temperature."""
        settings = self.models.get(model)
        if settings is None:
            raise UnsupportedModelError(model, f"{model.value} has no settings in this model selection.")
        return CompletionRequest(
            model=model,
            messages=messages,
            temperature=settings.temperature,
            frequency_penalty=frequency_penalty,
        )
