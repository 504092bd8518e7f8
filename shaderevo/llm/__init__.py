"""
LLM module for the shaderevo evolutionary system.

This module provides a lightweight wrapper for interacting with Gemini
in the context of shader evolution.
"""

from .llm import (
    GeminiLLMClient,
    LLMUsageStats,
    LLMGenerationError,
    ConfigMissingError,
    DEFAULT_MODEL,
    DEFAULT_SAFETY_SETTINGS,
    create_llm_client,
    resolve_api_key
)

__all__ = [
    "GeminiLLMClient",
    "LLMUsageStats",
    "LLMGenerationError",
    "ConfigMissingError",
    "DEFAULT_MODEL",
    "DEFAULT_SAFETY_SETTINGS",
    "create_llm_client",
    "resolve_api_key"
]
