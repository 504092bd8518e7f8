"""
Core components for shaderevo - LLM-driven evolution of shader variants.
"""

from .prompt_composer import (
    PromptComposer,
    PromptConfig,
    DEFAULT_EVOLVE_PROMPT,
    create_prompt_composer
)

from .extractor import (
    CodeExtractor,
    looks_like_shader
)

from .poller import (
    BuildAndBindPoller,
    PollConfig
)

from .controller import (
    EvolutionController,
    EvolutionConfig,
    create_evolution_controller
)

__all__ = [
    "PromptComposer",
    "PromptConfig",
    "DEFAULT_EVOLVE_PROMPT",
    "create_prompt_composer",
    "CodeExtractor",
    "looks_like_shader",
    "BuildAndBindPoller",
    "PollConfig",
    "EvolutionController",
    "EvolutionConfig",
    "create_evolution_controller"
]
