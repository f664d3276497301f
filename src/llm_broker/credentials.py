from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

from .errors import TransportConfigurationError
from .models import BackendFamily

DEFAULT_AZURE_API_VERSION = "2023-08-01-preview"


@dataclass(frozen=True)
class OpenAIKey:
    api_key: str

    @property
    def family(self) -> BackendFamily:
        return BackendFamily.OPENAI


@dataclass(frozen=True)
class AzureOpenAIConfig:
    deployment_id: str
    api_base: str
    api_key: str
    api_version: str = DEFAULT_AZURE_API_VERSION

    @property
    def family(self) -> BackendFamily:
        return BackendFamily.AZURE


@dataclass(frozen=True)
class AnthropicKey:
    api_key: str

    @property
    def family(self) -> BackendFamily:
        return BackendFamily.ANTHROPIC


CredentialBundle = Union[OpenAIKey, AzureOpenAIConfig, AnthropicKey]

_TAGS: dict[str, type] = {
    "OpenAI": OpenAIKey,
    "OpenAIAzureConfig": AzureOpenAIConfig,
    "Anthropic": AnthropicKey,
}


def credentials_from_dict(raw: dict[str, Any]) -> CredentialBundle:
    """
    Parse the externally-tagged form used in provider lists, e.g.

        {"OpenAIAzureConfig": {"deployment_id": ..., "api_base": ..., "api_key": ...}}
    """
    if not isinstance(raw, dict) or len(raw) != 1:
        raise TransportConfigurationError("Credential entry must be an object with exactly one tag.")
    tag, body = next(iter(raw.items()))
    cls = _TAGS.get(tag)
    if cls is None:
        raise TransportConfigurationError(f"Unknown credential tag: {tag!r}")
    if not isinstance(body, dict):
        raise TransportConfigurationError(f"Credential body for {tag!r} must be an object.")
    try:
        return cls(**body)
    except TypeError as e:
        raise TransportConfigurationError(f"Malformed credential body for {tag!r}.") from e
