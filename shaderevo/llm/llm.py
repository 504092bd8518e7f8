"""
Lightweight LLM client for the shaderevo evolutionary system.

This module provides a simple async interface for interacting with Gemini
for generating shader source, plus a few one-shot helpers (plain text,
JSON mode, model listing).
"""

import json
import logging
import os
from typing import Dict, Any, List, Optional
from dataclasses import dataclass

from dotenv import dotenv_values

from ..entities import Content, Part, GenerationRequest, GenerationResponse


logger = logging.getLogger(__name__)


DEFAULT_MODEL = "gemini-2.5-pro"

# Same thresholds are sent with every request
DEFAULT_SAFETY_SETTINGS = [
    {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_LOW_AND_ABOVE"},
]


@dataclass
class LLMUsageStats:
    """Basic LLM usage tracking."""
    total_requests: int = 0
    failed_requests: int = 0
    blocked_requests: int = 0

    def add_request(self, failed: bool = False, blocked: bool = False):
        """Add a request to the usage statistics."""
        self.total_requests += 1
        if failed:
            self.failed_requests += 1
        if blocked:
            self.blocked_requests += 1

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of usage statistics."""
        success_rate = (self.total_requests - self.failed_requests) / max(1, self.total_requests)

        return {
            "total_requests": self.total_requests,
            "successful_requests": self.total_requests - self.failed_requests,
            "failed_requests": self.failed_requests,
            "blocked_requests": self.blocked_requests,
            "success_rate": success_rate
        }


class LLMGenerationError(Exception):
    """Exception raised when LLM generation fails."""
    pass


class ConfigMissingError(Exception):
    """Exception raised when no API key can be found."""
    pass


def resolve_api_key(api_key: Optional[str] = None, env_file: str = ".env") -> str:
    """
    Find the Gemini API key.

    Lookup order: explicit argument, ``GOOGLE_API_KEY`` environment variable,
    then a ``key=...`` entry in ``env_file``.

    Raises:
        ConfigMissingError: If no key is found anywhere
    """
    if api_key:
        return api_key

    env_key = os.environ.get("GOOGLE_API_KEY")
    if env_key:
        return env_key

    if env_file and os.path.exists(env_file):
        values = dotenv_values(env_file)
        file_key = values.get("key") or values.get("GOOGLE_API_KEY")
        if file_key:
            return file_key

    raise ConfigMissingError(
        f"No Gemini API key configured. Pass api_key, set GOOGLE_API_KEY, "
        f"or add key=YOUR_API_KEY to {env_file}"
    )


def _block_reason(response) -> Optional[str]:
    feedback = getattr(response, "prompt_feedback", None)
    if feedback is None:
        return None
    reason = getattr(feedback, "block_reason", None)
    if not reason:
        return None
    return getattr(reason, "name", str(reason))


class GeminiLLMClient:
    """
    Simple async Google Gemini LLM client.

    Requires google-generativeai package to be installed.
    """

    def __init__(self, model_name: str = DEFAULT_MODEL, api_key: Optional[str] = None,
                 env_file: str = ".env", **kwargs):
        self.model_name = model_name
        self.api_key = resolve_api_key(api_key, env_file)
        self.config = kwargs
        self.usage_stats = LLMUsageStats()
        self._genai = None
        # One GenerativeModel per system instruction
        self._models: Dict[Optional[str], Any] = {}
        self._initialize_client()

    def _initialize_client(self):
        """Initialize the Gemini client."""
        try:
            import google.generativeai as genai

            genai.configure(api_key=self.api_key)
            self._genai = genai

            logger.info(f"Initialized Gemini client with model: {self.model_name}")

        except ImportError:
            raise LLMGenerationError(
                "google-generativeai package not found. Install with: pip install google-generativeai"
            )
        except Exception as e:
            raise LLMGenerationError(f"Failed to initialize Gemini client: {e}")

    def _get_model(self, system_instruction: Optional[str] = None):
        if system_instruction not in self._models:
            self._models[system_instruction] = self._genai.GenerativeModel(
                model_name=self.model_name,
                system_instruction=system_instruction
            )
        return self._models[system_instruction]

    def _generation_config(self, candidate_count: int = 1, **overrides) -> Dict[str, Any]:
        generation_config = {
            "candidate_count": candidate_count,
            "temperature": self.config.get("temperature", 1.0),
            "max_output_tokens": self.config.get("max_output_tokens", 8192),
        }
        generation_config.update(overrides)
        return generation_config

    def _request_options(self) -> Dict[str, Any]:
        timeout = self.config.get("request_timeout")
        return {"timeout": timeout} if timeout else {}

    async def generate_content(self, request: GenerationRequest) -> GenerationResponse:
        """
        Send a conversation to Gemini.

        Args:
            request: Conversation plus generation settings

        Returns:
            Response holding the candidates; an empty candidate list means
            the prompt was blocked and ``block_reason`` says why

        Raises:
            LLMGenerationError: On transport failure or a malformed response
        """
        if not self._genai:
            raise LLMGenerationError("Gemini client not initialized")

        try:
            model = self._get_model(request.system_instruction)
            kwargs = {
                "generation_config": self._generation_config(request.candidate_count),
                "safety_settings": request.safety_settings or DEFAULT_SAFETY_SETTINGS,
            }
            if request.tools:
                kwargs["tools"] = request.tools
            request_options = self._request_options()
            if request_options:
                kwargs["request_options"] = request_options

            response = await model.generate_content_async(
                [content.to_dict() for content in request.contents], **kwargs
            )

            candidates = []
            for candidate in response.candidates or []:
                parts = [Part(part.text) for part in candidate.content.parts
                         if getattr(part, "text", None)]
                candidates.append(Content(role=candidate.content.role or "model", parts=parts))

            result = GenerationResponse(candidates=candidates,
                                        block_reason=_block_reason(response))

        except Exception as e:
            self.usage_stats.add_request(failed=True)
            logger.error(f"Gemini generation failed: {e}")
            raise LLMGenerationError(f"Gemini generation failed: {e}") from e

        self.usage_stats.add_request(blocked=not result.candidates)
        logger.debug(f"Gemini returned {len(result.candidates)} candidate(s)")

        return result

    async def generate(self, prompt: str, system_instruction: Optional[str] = None) -> str:
        """
        Generate a single text response.

        Raises:
            LLMGenerationError: If generation fails or nothing comes back
        """
        response = await self.generate_content(GenerationRequest(
            contents=[Content.user(prompt)],
            system_instruction=system_instruction
        ))

        if response.first is None or not response.first.text:
            raise LLMGenerationError(
                f"No content in Gemini response (block reason: {response.block_reason})"
            )

        return response.first.text

    async def generate_json(self, prompt: str, schema: Optional[Any] = None) -> Any:
        """
        Generate a response in JSON mode and decode it.

        Args:
            prompt: The input prompt
            schema: Optional response schema passed to the model

        Raises:
            LLMGenerationError: If generation fails or the reply is not JSON
        """
        if not self._genai:
            raise LLMGenerationError("Gemini client not initialized")

        overrides = {"response_mime_type": "application/json"}
        if schema is not None:
            overrides["response_schema"] = schema

        try:
            response = await self._get_model().generate_content_async(
                prompt, generation_config=self._generation_config(**overrides)
            )
            text = response.candidates[0].content.parts[0].text
        except Exception as e:
            self.usage_stats.add_request(failed=True)
            logger.error(f"Gemini JSON generation failed: {e}")
            raise LLMGenerationError(f"Gemini JSON generation failed: {e}") from e

        self.usage_stats.add_request(failed=False)

        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise LLMGenerationError(f"Gemini returned invalid JSON: {e}") from e

    def list_models(self) -> List[str]:
        """Names of the models available to this API key."""
        try:
            return [model.name for model in self._genai.list_models()]
        except Exception as e:
            raise LLMGenerationError(f"Failed to list Gemini models: {e}") from e

    def get_usage_stats(self) -> Dict[str, Any]:
        """Get current usage statistics."""
        return self.usage_stats.get_summary()

    def reset_usage_stats(self):
        """Reset usage statistics."""
        self.usage_stats = LLMUsageStats()


# Factory function for creating the client
def create_llm_client(provider: str = "gemini", model_name: str = None, **kwargs) -> GeminiLLMClient:
    """
    Create an LLM client for use in the evolutionary system.

    Args:
        provider: LLM provider (currently only "gemini" supported)
        model_name: Model name (defaults to DEFAULT_MODEL)
        **kwargs: Additional configuration parameters

    Returns:
        GeminiLLMClient instance ready for use

    Raises:
        ValueError: If provider is not supported
    """
    if provider.lower() == "gemini":
        return GeminiLLMClient(model_name or DEFAULT_MODEL, **kwargs)
    else:
        raise ValueError(f"Unsupported LLM provider: {provider}. Available: 'gemini'")
