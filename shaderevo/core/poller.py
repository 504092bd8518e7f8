"""
Build-and-bind poller for generated shaders.

Each variant slot walks IDLE -> WRITING -> AWAITING_COMPILE and ends in
COMPILED or TIMED_OUT, or FAILED when the pipeline itself errors. The asset
pipeline offers no completion callback, so compilation is observed by polling
at a fixed interval with a bounded number of attempts, forcing a reimport
every ``reimport_every`` misses to unstick imports that stalled.

Pipeline and scene calls may block on I/O and run in worker threads.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..assets.pipeline import AssetPipeline, AssetPipelineError
from ..assets.scene import ManifestScene
from ..entities import CompiledArtifact, SlotPhase, VariantSlot


logger = logging.getLogger(__name__)


@dataclass
class PollConfig:
    """Configuration for writing, polling and binding shaders."""
    output_dir: str = "Assets/GeneratedShaders"
    template: str = "BaseMesh"
    poll_interval: float = 0.1  # seconds between lookups
    max_attempts: int = 200
    reimport_every: int = 20
    directory_settle_delay: float = 0.1


class BuildAndBindPoller:
    """
    Persists shader source, waits for the pipeline to compile it and binds
    the result to a freshly spawned object.

    Slot fields are only changed here and in ``release``; every transition
    replaces the object and material together.
    """

    def __init__(self, pipeline: AssetPipeline, scene: ManifestScene,
                 config: Optional[PollConfig] = None):
        self.pipeline = pipeline
        self.scene = scene
        self.config = config or PollConfig()
        self.output_dir = Path(self.config.output_dir)

    async def bind(self, slot: VariantSlot, source: str) -> SlotPhase:
        """
        Write, compile and bind ``source`` to ``slot``.

        Returns:
            The final phase: COMPILED, TIMED_OUT, or FAILED when the asset
            pipeline or the file system raised
        """
        self.release(slot)
        slot.phase = SlotPhase.WRITING
        slot.source = source

        suffix = uuid.uuid4().hex[:8]
        stem = f"EvolvedShader_{slot.index}_{suffix}"
        slot.shader_name = f"Custom/{stem}"

        try:
            return await self._build(slot, source, stem)
        except (AssetPipelineError, OSError) as e:
            logger.error(f"Asset pipeline failed for shader '{slot.shader_name}': {e}")
            self.release(slot)
            slot.phase = SlotPhase.FAILED
            return slot.phase

    async def _build(self, slot: VariantSlot, source: str, stem: str) -> SlotPhase:
        source_path = await self._write(stem, source)
        slot.source_path = str(source_path)
        self.pipeline.track(str(source_path))
        await asyncio.to_thread(self.pipeline.refresh)

        slot.phase = SlotPhase.AWAITING_COMPILE
        logger.info(f"Attempting to load and compile shader: {slot.shader_name} at path: {source_path}")
        artifact = await self._await_compile(slot, source_path)

        if artifact is None:
            slot.phase = SlotPhase.TIMED_OUT
            logger.error(f"Failed to load/compile shader '{slot.shader_name}' at '{source_path}' "
                         f"after {self.config.max_attempts} attempts. The shader code might be "
                         f"invalid or the import got stuck.")
            logger.error(f"Problematic shader code for '{slot.shader_name}':\n{source}")
            return slot.phase

        await asyncio.to_thread(self._materialize, slot, artifact, stem)
        slot.phase = SlotPhase.COMPILED
        logger.info(f"Variant {slot.index} created successfully with shader '{slot.shader_name}'.")
        return slot.phase

    def release(self, slot: VariantSlot):
        """Destroy the slot's spawned object and material asset, if any."""
        if slot.spawned_object is not None:
            self.scene.destroy(slot.spawned_object)
            slot.spawned_object = None
        if slot.material_path:
            self.pipeline.delete_asset(slot.material_path)
            slot.material_path = None
        slot.artifact = None

    async def _write(self, stem: str, source: str) -> Path:
        if not self.output_dir.exists():
            self.output_dir.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(self.pipeline.refresh)
            await asyncio.sleep(self.config.directory_settle_delay)

        source_path = self.output_dir / f"{stem}.shader"
        await asyncio.to_thread(source_path.write_text, source)
        return source_path

    async def _await_compile(self, slot: VariantSlot, source_path: Path) -> Optional[CompiledArtifact]:
        max_attempts = self.config.max_attempts

        for attempt in range(1, max_attempts + 1):
            artifact = await asyncio.to_thread(self._lookup, slot, source_path, attempt)
            if artifact is not None:
                logger.info(f"Shader '{slot.shader_name}' compiled without errors "
                            f"after {attempt} attempts.")
                return artifact

            if attempt % self.config.reimport_every == 0:
                await asyncio.to_thread(self.pipeline.force_reimport, str(source_path))

            if attempt < max_attempts:
                await asyncio.sleep(self.config.poll_interval)

        return None

    def _lookup(self, slot: VariantSlot, source_path: Path, attempt: int) -> Optional[CompiledArtifact]:
        max_attempts = self.config.max_attempts
        try:
            artifact = self.pipeline.load_compiled_artifact_by_path(str(source_path))
            if artifact is None:
                artifact = self.pipeline.find_compiled_artifact_by_name(slot.shader_name)

            if artifact is None:
                logger.debug(f"Shader '{slot.shader_name}' not found. "
                             f"Attempt {attempt}/{max_attempts}. Waiting...")
                return None

            if self.pipeline.has_compile_error(artifact):
                logger.warning(f"Shader '{slot.shader_name}' found but has compilation errors. "
                               f"Attempt {attempt}/{max_attempts}. Retrying...")
                return None

            return artifact

        except Exception as e:
            logger.error(f"Exception during shader load/check: {e}")
            return None

    def _materialize(self, slot: VariantSlot, artifact: CompiledArtifact, stem: str):
        material_path = self.output_dir / f"Mat_{stem}.mat"
        material = self.pipeline.create_material(artifact, str(material_path))
        slot.material_path = material.path
        logger.info(f"Material asset created at: {material.path}")

        spawned = self.scene.instantiate(self.config.template, slot.parent, f"Variant_{slot.index}_{stem}")
        slot.spawned_object = spawned
        self.scene.assign_material(spawned, material)
        slot.artifact = artifact
