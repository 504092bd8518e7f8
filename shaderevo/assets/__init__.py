"""
Asset pipeline and scene collaborators for shader evolution.
"""

from .pipeline import (
    AssetPipeline,
    AssetPipelineError,
    parse_shader_name
)
from .docker_pipeline import DockerShaderPipeline
from .scene import ManifestScene

__all__ = [
    "AssetPipeline",
    "AssetPipelineError",
    "parse_shader_name",
    "DockerShaderPipeline",
    "ManifestScene"
]
