"""
Prompt composer for shader evolution requests.

Builds the per-variant request text: the evolution instruction, an optional
reference shader to start from, and, for every variant after the first, the
preceding variant's source together with an instruction to diverge from it.
"""

from dataclasses import dataclass


DEFAULT_EVOLVE_PROMPT = "Generate a new interesting shader."

SEPARATOR = "\n---"


@dataclass
class PromptConfig:
    """Configuration for prompt composition."""
    include_base_source: bool = True
    include_previous_variant: bool = True
    fence_language: str = "shader"
    default_prompt: str = DEFAULT_EVOLVE_PROMPT


class PromptComposer:
    """
    Builds the request string for one variant of an evolution pass.

    Composition has no side effects; the orchestrator decides which sources
    to pass in.
    """

    def __init__(self, config: PromptConfig = None):
        self.config = config or PromptConfig()

    def effective_prompt(self, evolve_prompt: str) -> str:
        """Blank instructions fall back to the default prompt."""
        if not evolve_prompt or not evolve_prompt.strip():
            return self.config.default_prompt
        return evolve_prompt

    def build(self, evolve_prompt: str, base_source: str = "",
              index: int = 0, previous_source: str = "") -> str:
        """
        Build the request for variant ``index``.

        Args:
            evolve_prompt: The user's evolution instruction
            base_source: Source of the variant selected for evolution
            index: Zero-based slot index being generated
            previous_source: Source currently held by slot ``index - 1``

        Returns:
            Complete request string for the model
        """
        prompt_parts = [
            self.effective_prompt(evolve_prompt),
            SEPARATOR,
            self._build_base_section(base_source),
            self._build_differentiation_section(index, previous_source),
        ]

        return "\n".join(part for part in prompt_parts if part) + "\n"

    def _fence(self, source: str) -> str:
        return f"```{self.config.fence_language}\n{source}\n```"

    def _build_base_section(self, base_source: str) -> str:
        if not self.config.include_base_source or not base_source or not base_source.strip():
            return ""

        return ("Use the following shader code as a starting point or inspiration "
                "for the evolutions:\n" + self._fence(base_source))

    def _build_differentiation_section(self, index: int, previous_source: str) -> str:
        if not self.config.include_previous_variant or index <= 0 or not previous_source:
            return ""

        return "\n".join([
            SEPARATOR,
            f"For this new Variant {index + 1}, please ensure it is distinct and offers a "
            f"different approach or visual style compared to the *immediately preceding* "
            f"Variant {index} which was:",
            self._fence(previous_source),
            "Focus on creating something new and different while still adhering to the main goal.",
        ])


# Factory function for easy composer creation
def create_prompt_composer(**kwargs) -> PromptComposer:
    """Create a PromptComposer from configuration keyword arguments."""
    return PromptComposer(PromptConfig(**kwargs))
