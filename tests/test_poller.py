"""
Tests for the build-and-bind poller.

These tests use an in-process pipeline (see conftest.py) so that polling,
reimport cadence and binding can be observed without Docker.
"""

import asyncio
import logging
import re
import threading
from pathlib import Path
from unittest.mock import AsyncMock, Mock, patch

import pytest

from shaderevo.assets import AssetPipelineError
from shaderevo.core.poller import BuildAndBindPoller, PollConfig
from shaderevo.entities import CompiledArtifact, SlotPhase, VariantSlot
from conftest import FakePipeline


SHADER = 'Shader "Custom/Glow" { SubShader { Pass { } } }'


class TestPollConfig:

    def test_defaults(self):
        config = PollConfig()

        assert config.output_dir == "Assets/GeneratedShaders"
        assert config.poll_interval == 0.1
        assert config.max_attempts == 200
        assert config.reimport_every == 20


class TestBind:
    """Test the happy path from writing to binding."""

    @pytest.mark.asyncio
    async def test_compiles_on_first_attempt(self, poller, fake_pipeline, scene, poll_config):
        slot = VariantSlot(index=0, parent="Root1")

        phase = await poller.bind(slot, SHADER)

        assert phase == SlotPhase.COMPILED
        assert slot.phase == SlotPhase.COMPILED
        assert slot.source == SHADER
        assert re.fullmatch(r"Custom/EvolvedShader_0_[0-9a-f]{8}", slot.shader_name)

        source_path = Path(slot.source_path)
        assert source_path.parent == Path(poll_config.output_dir)
        assert re.fullmatch(r"EvolvedShader_0_[0-9a-f]{8}\.shader", source_path.name)
        assert source_path.read_text() == SHADER

        suffix = source_path.stem.split("_")[-1]
        assert slot.spawned_object.name == f"Variant_0_EvolvedShader_0_{suffix}"
        assert slot.spawned_object.parent == "Root1"
        assert slot.spawned_object.template == "BaseMesh"
        assert slot.material_path.endswith(f"Mat_EvolvedShader_0_{suffix}.mat")
        assert slot.spawned_object.material_path == slot.material_path
        assert slot.artifact.name == "Custom/Glow"
        assert fake_pipeline.materials[slot.material_path].shader_name == slot.artifact.name

        assert scene.objects[slot.spawned_object.name].material_path == slot.material_path
        assert fake_pipeline.reimports == []
        assert fake_pipeline.tracked == [slot.source_path]

    @pytest.mark.asyncio
    async def test_creates_output_directory(self, poller, fake_pipeline, poll_config):
        assert not Path(poll_config.output_dir).exists()

        await poller.bind(VariantSlot(index=0), SHADER)

        assert Path(poll_config.output_dir).is_dir()
        # Once for the new directory, once for the written source
        assert fake_pipeline.refreshes == 2

    @pytest.mark.asyncio
    async def test_pipeline_calls_leave_event_loop_thread(self, poller, fake_pipeline):
        loop_thread = threading.get_ident()
        seen = []
        lookup = fake_pipeline.load_compiled_artifact_by_path
        refresh = fake_pipeline.refresh
        create_material = fake_pipeline.create_material

        def record(name, func):
            def wrapper(*args):
                seen.append((name, threading.get_ident()))
                return func(*args)
            return wrapper

        fake_pipeline.load_compiled_artifact_by_path = record("lookup", lookup)
        fake_pipeline.refresh = record("refresh", refresh)
        fake_pipeline.create_material = record("create_material", create_material)

        await poller.bind(VariantSlot(index=0), SHADER)

        assert {name for name, _ in seen} == {"lookup", "refresh", "create_material"}
        assert all(ident != loop_thread for _, ident in seen)

    @pytest.mark.asyncio
    async def test_compiles_after_several_attempts(self, scene, poll_config):
        pipeline = FakePipeline(ready_after=5)
        poller = BuildAndBindPoller(pipeline, scene, PollConfig(output_dir=poll_config.output_dir, directory_settle_delay=0))

        with patch("shaderevo.core.poller.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            phase = await poller.bind(VariantSlot(index=1), SHADER)

        assert phase == SlotPhase.COMPILED
        assert pipeline.lookups == 5
        poll_sleeps = [c for c in mock_sleep.await_args_list if c.args == (0.1,)]
        assert len(poll_sleeps) == 4

    @pytest.mark.asyncio
    async def test_falls_back_to_lookup_by_name(self, poller, fake_pipeline):
        fake_pipeline.ready_after = None
        found = {}

        def by_name(name):
            found[name] = CompiledArtifact(name, "elsewhere.shader")
            return found[name]

        fake_pipeline.find_compiled_artifact_by_name = by_name
        slot = VariantSlot(index=0)

        phase = await poller.bind(slot, SHADER)

        assert phase == SlotPhase.COMPILED
        assert slot.artifact is found[slot.shader_name]

    @pytest.mark.asyncio
    async def test_lookup_exception_counts_as_miss(self, poller, fake_pipeline):
        original = fake_pipeline.load_compiled_artifact_by_path
        calls = {"n": 0}

        def flaky(path):
            calls["n"] += 1
            if calls["n"] == 1:
                raise RuntimeError("import database locked")
            return original(path)

        fake_pipeline.load_compiled_artifact_by_path = flaky

        phase = await poller.bind(VariantSlot(index=0), SHADER)

        assert phase == SlotPhase.COMPILED
        assert calls["n"] == 2


class TestTimeout:
    """Test the bounded retry budget."""

    @pytest.mark.asyncio
    async def test_times_out_after_budget(self, scene, poll_config, caplog):
        pipeline = FakePipeline(ready_after=None)
        poller = BuildAndBindPoller(pipeline, scene, PollConfig(output_dir=poll_config.output_dir, directory_settle_delay=0))
        slot = VariantSlot(index=2)

        with patch("shaderevo.core.poller.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            with caplog.at_level(logging.ERROR, logger="shaderevo.core.poller"):
                phase = await poller.bind(slot, SHADER)

        assert phase == SlotPhase.TIMED_OUT
        assert slot.phase == SlotPhase.TIMED_OUT
        assert pipeline.lookups == 200
        assert slot.spawned_object is None
        assert slot.artifact is None
        assert scene.objects == {}

        poll_sleeps = [c for c in mock_sleep.await_args_list if c.args == (0.1,)]
        assert len(poll_sleeps) == 199
        assert SHADER in caplog.text

    @pytest.mark.asyncio
    async def test_reimport_once_per_twenty_misses(self, poller, fake_pipeline):
        fake_pipeline.ready_after = None

        await poller.bind(VariantSlot(index=0), SHADER)

        assert fake_pipeline.reimports == list(range(20, 201, 20))

    @pytest.mark.asyncio
    async def test_compile_errors_never_bind(self, scene, poll_config):
        pipeline = FakePipeline(ready_after=1, errors=["Parse error: syntax error, unexpected '}'"])
        config = PollConfig(output_dir=poll_config.output_dir, poll_interval=0, max_attempts=30)
        poller = BuildAndBindPoller(pipeline, scene, config)

        phase = await poller.bind(VariantSlot(index=0), SHADER)

        assert phase == SlotPhase.TIMED_OUT
        assert pipeline.lookups == 30
        assert pipeline.reimports == [20]

    @pytest.mark.asyncio
    async def test_compiles_right_after_reimport(self, scene, poll_config):
        pipeline = FakePipeline(ready_after=21)
        config = PollConfig(output_dir=poll_config.output_dir, poll_interval=0)
        poller = BuildAndBindPoller(pipeline, scene, config)

        phase = await poller.bind(VariantSlot(index=0), SHADER)

        assert phase == SlotPhase.COMPILED
        assert pipeline.reimports == [20]


class TestPipelineFailure:
    """Test that pipeline errors end the slot as FAILED instead of raising."""

    @pytest.mark.asyncio
    async def test_refresh_error(self, scene, poll_config, caplog):
        pipeline = FakePipeline(refresh_error=AssetPipelineError("docker daemon unavailable"))
        poller = BuildAndBindPoller(pipeline, scene, poll_config)
        slot = VariantSlot(index=0, parent="Root1")

        phase = await poller.bind(slot, SHADER)

        assert phase == SlotPhase.FAILED
        assert slot.phase == SlotPhase.FAILED
        assert slot.spawned_object is None
        assert slot.material_path is None
        assert pipeline.lookups == 0
        assert scene.objects == {}
        assert "docker daemon unavailable" in caplog.text

    @pytest.mark.asyncio
    async def test_reimport_error(self, poller, fake_pipeline):
        fake_pipeline.ready_after = None

        def reimport(path):
            raise AssetPipelineError("container start failed")

        fake_pipeline.force_reimport = reimport

        phase = await poller.bind(VariantSlot(index=0), SHADER)

        assert phase == SlotPhase.FAILED
        assert fake_pipeline.lookups == 20

    @pytest.mark.asyncio
    async def test_scene_error_removes_created_material(self, fake_pipeline, poll_config):
        scene = Mock()
        scene.instantiate.side_effect = OSError("manifest is read-only")
        poller = BuildAndBindPoller(fake_pipeline, scene, poll_config)
        slot = VariantSlot(index=0)

        phase = await poller.bind(slot, SHADER)

        assert phase == SlotPhase.FAILED
        assert slot.material_path is None
        assert len(fake_pipeline.deleted) == 1
        assert fake_pipeline.materials == {}

    @pytest.mark.asyncio
    async def test_failed_rebind_releases_previous_variant(self, poller, fake_pipeline, scene):
        slot = VariantSlot(index=0)
        await poller.bind(slot, SHADER)

        fake_pipeline.refresh_error = AssetPipelineError("docker daemon unavailable")
        phase = await poller.bind(slot, 'Shader "Custom/Second" { }')

        assert phase == SlotPhase.FAILED
        assert scene.objects == {}
        assert not slot.is_bound

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, poller, fake_pipeline):
        fake_pipeline.ready_after = None
        cancelled = AsyncMock(side_effect=asyncio.CancelledError())

        with patch("shaderevo.core.poller.asyncio.sleep", cancelled):
            with pytest.raises(asyncio.CancelledError):
                await poller.bind(VariantSlot(index=0), SHADER)


class TestRegeneration:
    """Test that rebinding replaces the previous object and material."""

    @pytest.mark.asyncio
    async def test_rebind_replaces_object_and_material(self, poller, fake_pipeline, scene):
        slot = VariantSlot(index=0)
        await poller.bind(slot, SHADER)
        first_object = slot.spawned_object
        first_material = slot.material_path
        first_source = slot.source_path

        fake_pipeline.reset_lookups()
        await poller.bind(slot, 'Shader "Custom/Second" { }')

        assert first_object.name not in scene.objects
        assert first_material in fake_pipeline.deleted
        assert slot.source_path != first_source
        assert Path(first_source).exists()
        assert slot.artifact.name == "Custom/Second"
        assert list(scene.objects) == [slot.spawned_object.name]

    @pytest.mark.asyncio
    async def test_timed_out_rebind_leaves_no_stale_object(self, poller, fake_pipeline, scene):
        slot = VariantSlot(index=0)
        await poller.bind(slot, SHADER)

        fake_pipeline.ready_after = None
        poller.config.max_attempts = 3
        phase = await poller.bind(slot, 'Shader "Custom/Broken" {')

        assert phase == SlotPhase.TIMED_OUT
        assert slot.spawned_object is None
        assert slot.material_path is None
        assert scene.objects == {}

    def test_release_on_empty_slot(self, poller, fake_pipeline):
        slot = VariantSlot(index=0)

        poller.release(slot)

        assert fake_pipeline.deleted == []
        assert slot.spawned_object is None

    @pytest.mark.asyncio
    async def test_scene_mock_receives_material(self, fake_pipeline, poll_config):
        scene = Mock()
        spawned = Mock()
        scene.instantiate.return_value = spawned
        poller = BuildAndBindPoller(fake_pipeline, scene, poll_config)
        slot = VariantSlot(index=1, parent="Root2")

        await poller.bind(slot, SHADER)

        args = scene.instantiate.call_args.args
        assert args[0] == "BaseMesh"
        assert args[1] == "Root2"
        material = scene.assign_material.call_args.args[1]
        assert material.path == slot.material_path
        assert slot.spawned_object is spawned
