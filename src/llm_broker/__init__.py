from .broker import DispatchItem, DispatchResult, LLMBroker, bootstrap
from .channel import CompletionReceiver, CompletionSender, completion_channel
from .config import BrokerConfig, ModelSelection, ModelSettings
from .contracts import ChatMessage, CompletionRequest, CompletionResponse, FunctionCall, PromptCompletionRequest, Role
from .credentials import AnthropicKey, AzureOpenAIConfig, CredentialBundle, OpenAIKey, credentials_from_dict
from .errors import ClientError
from .models import MODEL_TABLE, BackendFamily, LLMType
from .provider import BackendVariant, ProviderClient
from .resolver import check_request, resolve

__all__ = [
    "AnthropicKey",
    "AzureOpenAIConfig",
    "BackendFamily",
    "BackendVariant",
    "BrokerConfig",
    "ChatMessage",
    "ClientError",
    "CompletionReceiver",
    "CompletionRequest",
    "CompletionResponse",
    "CompletionSender",
    "CredentialBundle",
    "DispatchItem",
    "DispatchResult",
    "FunctionCall",
    "LLMBroker",
    "LLMType",
    "MODEL_TABLE",
    "ModelSelection",
    "ModelSettings",
    "OpenAIKey",
    "PromptCompletionRequest",
    "ProviderClient",
    "Role",
    "bootstrap",
    "check_request",
    "completion_channel",
    "credentials_from_dict",
    "resolve",
]
