# Docker-backed shader compilation
from pathlib import Path
from typing import Dict, Optional, Set
import logging

import docker
import docker.errors
import yaml

from .pipeline import AssetPipeline, AssetPipelineError, parse_shader_name
from ..entities import CompiledArtifact, Material


logger = logging.getLogger(__name__)


DEFAULT_IMAGE = "shaderevo/shader-compiler"
DEFAULT_COMPILE_COMMAND = "compile-shader {source}"
CONTAINER_WORKDIR = "/work"
FINISHED_STATES = ("exited", "dead")


class DockerShaderPipeline(AssetPipeline):
    """
    Asset pipeline that compiles each shader in a detached container.

    ``refresh`` starts a container for every tracked source file that has no
    job yet, so shaders left in ``output_dir`` by earlier runs are never
    recompiled. The lookups only report an artifact once that container has
    finished. A non-zero exit code turns the container's output
    into compile errors.
    """

    def __init__(self, output_dir: str, image_name: str = DEFAULT_IMAGE,
                 compile_command: str = DEFAULT_COMPILE_COMMAND,
                 source_suffix: str = ".shader"):
        self.docker_client = docker.from_env()
        self.output_dir = Path(output_dir)
        self.image_name = image_name
        self.compile_command = compile_command
        self.source_suffix = source_suffix
        self._jobs: Dict[str, "docker.models.containers.Container"] = {}
        self._artifacts: Dict[str, CompiledArtifact] = {}
        self._pending: Set[str] = set()

        # Ensure Docker image is available
        try:
            self.docker_client.images.get(self.image_name)
        except docker.errors.ImageNotFound:
            logger.info(f"Pulling Docker image: {self.image_name}")
            self.docker_client.images.pull(self.image_name)

    def track(self, path: str) -> None:
        source = Path(path)
        if source.suffix == self.source_suffix:
            self._pending.add(str(source))

    def refresh(self) -> None:
        for key in sorted(self._pending):
            source = Path(key)
            if not source.exists():
                continue
            if key not in self._jobs and key not in self._artifacts:
                self._start_job(source)
            self._pending.discard(key)

    def load_compiled_artifact_by_path(self, path: str) -> Optional[CompiledArtifact]:
        key = str(Path(path))
        if key in self._artifacts:
            return self._artifacts[key]

        job = self._jobs.get(key)
        if job is None:
            return None

        job.reload()
        if job.status not in FINISHED_STATES:
            return None

        artifact = self._collect(key, job)
        self._artifacts[key] = artifact
        del self._jobs[key]
        return artifact

    def find_compiled_artifact_by_name(self, name: str) -> Optional[CompiledArtifact]:
        for artifact in self._artifacts.values():
            if artifact.name == name:
                return artifact
        return None

    def has_compile_error(self, artifact: CompiledArtifact) -> bool:
        return artifact.has_errors

    def force_reimport(self, path: str) -> None:
        key = str(Path(path))
        logger.info(f"Forcing reimport of {key}")
        self._artifacts.pop(key, None)
        job = self._jobs.pop(key, None)
        if job is not None:
            self._remove(job)
        if Path(key).exists():
            self._start_job(Path(key))

    def create_material(self, artifact: CompiledArtifact, path: str) -> Material:
        material = Material(name=Path(path).stem, shader_name=artifact.name, path=str(path))

        Path(path).parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            yaml.safe_dump({
                "material": {
                    "name": material.name,
                    "shader": artifact.name,
                    "shader_path": artifact.path,
                }
            }, f, sort_keys=False)

        return material

    def delete_asset(self, path: str) -> None:
        key = str(Path(path))
        self._pending.discard(key)
        self._artifacts.pop(key, None)
        job = self._jobs.pop(key, None)
        if job is not None:
            self._remove(job)
        Path(key).unlink(missing_ok=True)

    def cleanup(self) -> None:
        """Clean up Docker resources"""
        for job in self._jobs.values():
            self._remove(job)
        self._jobs.clear()
        try:
            self.docker_client.close()
        except Exception as e:
            logger.warning(f"Error closing Docker client: {e}")

    def _start_job(self, source: Path) -> None:
        command = self.compile_command.format(source=f"{CONTAINER_WORKDIR}/{source.name}")
        try:
            self._jobs[str(source)] = self.docker_client.containers.run(
                self.image_name,
                command,
                volumes={
                    str(source.parent.resolve()): {'bind': CONTAINER_WORKDIR, 'mode': 'ro'}
                },
                detach=True
            )
        except docker.errors.DockerException as e:
            raise AssetPipelineError(f"Failed to start compile job for {source}: {e}") from e

    def _collect(self, key: str, job) -> CompiledArtifact:
        source = Path(key).read_text() if Path(key).exists() else ""
        name = parse_shader_name(source) or Path(key).stem

        exit_code = job.wait().get("StatusCode", 1)
        errors = []
        if exit_code != 0:
            output = job.logs(stdout=True, stderr=True).decode("utf-8", errors="replace")
            errors = [line for line in output.splitlines() if line.strip()]
            errors = errors or [f"Compiler exited with code {exit_code}"]

        self._remove(job)
        return CompiledArtifact(name=name, path=key, errors=errors)

    def _remove(self, job) -> None:
        try:
            job.remove(force=True)
        except docker.errors.APIError as e:
            logger.warning(f"Failed to remove compile container: {e}")
