"""
Asset pipeline interface consumed by the build-and-bind poller.

Compilation is asynchronous and poll-only: callers write source files,
request a refresh, then repeatedly query for the compiled artifact.
"""

import re
from abc import ABC, abstractmethod
from typing import Optional

from ..entities import CompiledArtifact, Material


SHADER_NAME_PATTERN = re.compile(r'Shader\s+"([^"]+)"')


class AssetPipelineError(Exception):
    """Exception raised when the asset pipeline cannot perform an operation."""
    pass


def parse_shader_name(source: str) -> Optional[str]:
    """Name declared by ``Shader "..."`` in the source, if any."""
    match = SHADER_NAME_PATTERN.search(source or "")
    return match.group(1) if match else None


class AssetPipeline(ABC):
    """Abstract base class for asset stores that compile shader sources."""

    def track(self, path: str) -> None:
        """Register a source file written by this process for the next ``refresh``."""
        pass

    @abstractmethod
    def refresh(self) -> None:
        """Start importing tracked source files that are new or changed."""
        pass

    @abstractmethod
    def load_compiled_artifact_by_path(self, path: str) -> Optional[CompiledArtifact]:
        """Compiled artifact for a source path, or None while not yet available."""
        pass

    @abstractmethod
    def find_compiled_artifact_by_name(self, name: str) -> Optional[CompiledArtifact]:
        """Compiled artifact by its declared shader name, or None."""
        pass

    @abstractmethod
    def has_compile_error(self, artifact: CompiledArtifact) -> bool:
        pass

    @abstractmethod
    def force_reimport(self, path: str) -> None:
        """Discard any import state for ``path`` and import it again."""
        pass

    @abstractmethod
    def create_material(self, artifact: CompiledArtifact, path: str) -> Material:
        """Create a material bound to ``artifact`` and persist it at ``path``."""
        pass

    @abstractmethod
    def delete_asset(self, path: str) -> None:
        """Remove a persisted asset; missing assets are ignored."""
        pass

    def cleanup(self) -> None:
        """Release any resources held by the pipeline."""
        pass
