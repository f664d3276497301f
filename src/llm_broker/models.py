from __future__ import annotations

from enum import Enum
from types import MappingProxyType
from typing import Mapping


class LLMType(str, Enum):
    GPT3_5_16K = "GPT3_5_16k"
    GPT4 = "Gpt4"
    GPT4_TURBO = "Gpt4Turbo"
    GPT4_32K = "Gpt4_32k"
    GPT4O = "Gpt4O"
    GPT4O_MINI = "Gpt4OMini"
    DEEPSEEK_CODER_33B_INSTRUCT = "DeepSeekCoder33BInstruct"
    # Logical models served by other clients; no mapping here.
    CLAUDE_SONNET = "ClaudeSonnet"
    CLAUDE_HAIKU = "ClaudeHaiku"
    MIXTRAL = "Mixtral"
    GEMINI_PRO = "GeminiPro"


class BackendFamily(str, Enum):
    OPENAI = "OpenAI"
    AZURE = "Azure"
    ANTHROPIC = "Anthropic"


MODEL_TABLE: Mapping[LLMType, str] = MappingProxyType(
    {
        LLMType.GPT3_5_16K: "gpt-3.5-turbo-16k-0613",
        LLMType.GPT4: "gpt-4-0613",
        LLMType.GPT4_TURBO: "gpt-4-1106-preview",
        LLMType.GPT4_32K: "gpt-4-32k-0613",
        LLMType.GPT4O: "gpt-4o",
        LLMType.GPT4O_MINI: "gpt-4o-mini",
        LLMType.DEEPSEEK_CODER_33B_INSTRUCT: "deepseek-coder-33b",
    }
)

# Models forced through an OpenAI-compatible endpoint described by a
# credential bundle of the given family, regardless of the bundle's usual
# routing.
PINNED_OPENAI_COMPATIBLE: Mapping[LLMType, BackendFamily] = MappingProxyType(
    {
        LLMType.DEEPSEEK_CODER_33B_INSTRUCT: BackendFamily.AZURE,
    }
)
