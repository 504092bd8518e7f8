"""
Shared fixtures: an in-process asset pipeline standing in for Docker.
"""

from pathlib import Path

import pytest

from shaderevo.assets.pipeline import AssetPipeline, parse_shader_name
from shaderevo.assets.scene import ManifestScene
from shaderevo.core.poller import BuildAndBindPoller, PollConfig
from shaderevo.entities import CompiledArtifact, Material


class FakePipeline(AssetPipeline):
    """
    Pipeline whose artifacts appear after ``ready_after`` path lookups.

    ``ready_after=None`` never compiles anything.
    """

    def __init__(self, ready_after=1, errors=None, refresh_error=None):
        self.ready_after = ready_after
        self.errors = list(errors or [])
        self.refresh_error = refresh_error
        self.tracked = []
        self.lookups = 0
        self.refreshes = 0
        self.reimports = []
        self.materials = {}
        self.deleted = []

    def track(self, path):
        self.tracked.append(path)

    def refresh(self):
        self.refreshes += 1
        if self.refresh_error is not None:
            raise self.refresh_error

    def load_compiled_artifact_by_path(self, path):
        self.lookups += 1
        if self.ready_after is None or self.lookups < self.ready_after:
            return None
        source = Path(path).read_text()
        return CompiledArtifact(parse_shader_name(source) or Path(path).stem, path, list(self.errors))

    def find_compiled_artifact_by_name(self, name):
        return None

    def has_compile_error(self, artifact):
        return artifact.has_errors

    def force_reimport(self, path):
        self.reimports.append(self.lookups)

    def create_material(self, artifact, path):
        material = Material(name=Path(path).stem, shader_name=artifact.name, path=path)
        Path(path).write_text(artifact.name)
        self.materials[path] = material
        return material

    def delete_asset(self, path):
        self.deleted.append(path)
        self.materials.pop(path, None)
        Path(path).unlink(missing_ok=True)

    def reset_lookups(self):
        self.lookups = 0


@pytest.fixture
def fake_pipeline():
    return FakePipeline()


@pytest.fixture
def scene(tmp_path):
    return ManifestScene(str(tmp_path / "scene.yaml"))


@pytest.fixture
def poll_config(tmp_path):
    return PollConfig(
        output_dir=str(tmp_path / "GeneratedShaders"),
        poll_interval=0,
        directory_settle_delay=0
    )


@pytest.fixture
def poller(fake_pipeline, scene, poll_config):
    return BuildAndBindPoller(fake_pipeline, scene, poll_config)
