"""
Shader source extraction from free-form model output.

Model replies are prose with code somewhere inside, so extraction degrades
through three tiers and never fails:

1. a fenced block (optionally tagged with a shader language) whose content
   looks like a shader;
2. the text from the first ``Shader "`` declaration onward;
3. the whole reply, trimmed.
"""

import logging
import re

from ..entities import Content


logger = logging.getLogger(__name__)


SHADER_LANGUAGES = ("shader", "hlsl", "glsl", "cg", "unityshader")

FENCE_PATTERN = re.compile(
    r"```(?:" + "|".join(SHADER_LANGUAGES) + r")?\s*([\s\S]+?)\s*```",
    re.IGNORECASE
)

DECLARATION_KEYWORD = "Shader"
DECLARATION_OPENER = 'Shader "'


def looks_like_shader(text: str) -> bool:
    """Structural check: declaration keyword plus an opening and closing brace."""
    return DECLARATION_KEYWORD in text and "{" in text and "}" in text


class CodeExtractor:
    """Best-effort recovery of shader source from model text."""

    def extract_from_content(self, content: Content) -> str:
        """Extract from every non-empty text part of a model turn."""
        raw = "\n".join(part.text for part in content.parts if part.text)
        return self.extract(raw)

    def extract(self, text: str) -> str:
        """
        Extract shader source from raw model output.

        Returns:
            The recovered source, or the trimmed input when nothing better is
            found. Empty only when the input is empty.
        """
        raw = (text or "").strip()

        match = FENCE_PATTERN.search(raw)
        if match:
            extracted = match.group(1).strip()
            if looks_like_shader(extracted):
                return extracted
            logger.warning(f"Fenced block does not look like a shader: {extracted[:200]}")

        start = raw.find(DECLARATION_OPENER)
        if start != -1:
            candidate = raw[start:]
            if "{" in candidate and "}" in candidate:
                return candidate.strip()

        if raw and not looks_like_shader(raw):
            logger.warning(f"Could not reliably extract shader code, using raw output: {raw[:200]}")

        return raw
