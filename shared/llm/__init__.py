"""
LLM Provider Module
===================

Language model access for the extraction and composition agents.

Usage:
    from shared.llm import get_llm_provider

    provider = get_llm_provider()
    payload = await provider.generate_json(
        "Extract every tax rate from the text below ...",
        system_prompt="You extract regulatory facts with exact quotes.",
    )
"""

from shared.llm.claude import ClaudeProvider
from shared.llm.provider import (
    LLMMessage,
    LLMOutputError,
    LLMProvider,
    LLMResponse,
    LLMUsage,
    get_llm_provider,
)

__all__ = [
    # Base
    "LLMProvider",
    "LLMMessage",
    "LLMOutputError",
    "LLMResponse",
    "LLMUsage",
    "get_llm_provider",
    # Providers
    "ClaudeProvider",
]
