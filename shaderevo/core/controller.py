"""
Controller for shaderevo - LLM-driven evolution of shader variants.

This module implements the evolution pass that coordinates:
- Prompt composition for each variant slot
- Gemini generation of candidate shaders
- Shader source extraction from the model reply
- Writing, compiling and binding shaders through the asset pipeline

Slots are processed strictly one after another so that only one variant at a
time writes to the shared asset store.
"""

import asyncio
import json
import logging
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, asdict, field

import mlflow

from .extractor import CodeExtractor
from .poller import BuildAndBindPoller
from .prompt_composer import PromptComposer
from ..entities import Content, GenerationRequest, SlotPhase, VariantSlot
from ..llm import GeminiLLMClient, LLMGenerationError, DEFAULT_SAFETY_SETTINGS


logger = logging.getLogger(__name__)

# Outcomes of slots that reached the asset pipeline
BIND_OUTCOMES = (SlotPhase.COMPILED.value, SlotPhase.TIMED_OUT.value, SlotPhase.FAILED.value)


@dataclass
class EvolutionConfig:
    """Configuration for the evolution pass."""
    num_variants: int = 3
    selected_variant: int = 0  # Slot whose source seeds the next pass
    evolve_prompt: str = ""
    system_instruction: str = "Generate a simple Unity URP unlit shader in .shader format."
    slot_parents: List[Optional[str]] = field(default_factory=list)
    inter_slot_delay: float = 0.5  # seconds, skipped after the last slot
    enable_search: bool = True

    # MLflow configuration
    experiment_name: str = "shaderevo_evolution"
    log_artifacts: bool = True
    tracking_uri: Optional[str] = None  # Use default local tracking if None


class EvolutionController:
    """
    Main controller for shader evolution.

    One pass runs, for each slot in order:
    1. prompt = composer.build(instruction, base source, previous variant)
    2. response = llm.generate_content(conversation)
    3. source = extractor.extract(first candidate)
    4. poller.bind(slot, source)
    """

    def __init__(self,
                 llm_client: GeminiLLMClient,
                 poller: BuildAndBindPoller,
                 prompt_composer: Optional[PromptComposer] = None,
                 extractor: Optional[CodeExtractor] = None,
                 config: Optional[EvolutionConfig] = None):
        self.llm_client = llm_client
        self.poller = poller
        self.prompt_composer = prompt_composer or PromptComposer()
        self.extractor = extractor or CodeExtractor()
        self.config = config or EvolutionConfig()

        self.variants: List[VariantSlot] = [
            VariantSlot(index=i, parent=self._slot_parent(i))
            for i in range(self.config.num_variants)
        ]
        self.messages: List[Content] = []
        self.messages_debug = ""

        # Track evolution statistics
        self.stats = {
            'passes_run': 0,
            'variants_compiled': 0,
            'variants_timed_out': 0,
            'variants_failed': 0,
            'invocation_failures': 0,
            'no_candidates': 0,
            'empty_extractions': 0
        }

        # Initialize MLflow tracking
        self._setup_mlflow()

    def _slot_parent(self, index: int) -> Optional[str]:
        parents = self.config.slot_parents
        return parents[index] if index < len(parents) else None

    def _setup_mlflow(self):
        """Set up MLflow experiment."""
        if self.config.tracking_uri:
            mlflow.set_tracking_uri(self.config.tracking_uri)

        experiment = mlflow.get_experiment_by_name(self.config.experiment_name)
        if experiment is None:
            experiment_id = mlflow.create_experiment(self.config.experiment_name)
            logger.info(f"Created new MLflow experiment: {self.config.experiment_name}")
        else:
            experiment_id = experiment.experiment_id
            logger.info(f"Using existing MLflow experiment: {self.config.experiment_name}")

        mlflow.set_experiment(experiment_id=experiment_id)

    async def evolve(self) -> Dict[str, Any]:
        """
        Run one full evolution pass across all slots.

        Cancelling the surrounding task aborts the pass: slots finished so
        far stay bound, later slots are left untouched.

        Returns:
            Dictionary with the outcome of each slot and pass statistics
        """
        logger.info(f"Starting evolution pass over {len(self.variants)} variants")

        with mlflow.start_run():
            mlflow.log_params({
                key: value for key, value in asdict(self.config).items()
                if value is not None and not isinstance(value, list)
            })
            results = await self._run_pass()
            self._log_pass_results(results)

        return results

    async def _run_pass(self) -> Dict[str, Any]:
        self.messages.clear()
        base_source = self._selected_source()
        evolve_prompt = self.prompt_composer.effective_prompt(self.config.evolve_prompt)

        outcomes = []
        for index in range(len(self.variants)):
            logger.info(f"--- Preparing to generate variant {index + 1} of {len(self.variants)} ---")
            outcome = await self._generate_variant(index, evolve_prompt, base_source)
            outcomes.append(outcome)

            if outcome in BIND_OUTCOMES:
                self.render_conversation()
                if index < len(self.variants) - 1:
                    await asyncio.sleep(self.config.inter_slot_delay)

        self.stats['passes_run'] += 1
        logger.info("Evolution pass (sequential generation) is done.")

        return {
            'outcomes': outcomes,
            'compiled': outcomes.count(SlotPhase.COMPILED.value),
            'timed_out': outcomes.count(SlotPhase.TIMED_OUT.value),
            'failed': outcomes.count(SlotPhase.FAILED.value),
            'skipped': sum(1 for o in outcomes if o.startswith('skipped')),
            'evolution_stats': dict(self.stats),
            'llm_stats': self.llm_client.get_usage_stats()
        }

    def _selected_source(self) -> str:
        index = self.config.selected_variant
        if 0 <= index < len(self.variants):
            return self.variants[index].source
        logger.error(f"Selected variant {index} is out of bounds for variants array.")
        return ""

    async def _generate_variant(self, index: int, evolve_prompt: str, base_source: str) -> str:
        """Generate and bind one slot; returns the outcome label."""
        previous_source = self.variants[index - 1].source if index > 0 else ""
        prompt = self.prompt_composer.build(evolve_prompt, base_source, index, previous_source)

        user_turn = Content.user(prompt)
        self.messages.append(user_turn)
        self.render_conversation()

        request = self._build_request()
        try:
            response = await self.llm_client.generate_content(request)
        except LLMGenerationError as e:
            logger.error(f"Generation failed for variant {index}: {e}")
            self.stats['invocation_failures'] += 1
            self.messages.remove(user_turn)
            return 'skipped_invocation_failure'

        model_turn = response.first
        if model_turn is None:
            logger.warning(f"No candidates received from the model for variant {index}.")
            if response.block_reason:
                logger.warning(f"Prompt Feedback: {response.block_reason}")
            self.stats['no_candidates'] += 1
            return 'skipped_no_candidates'

        self.messages.append(model_turn)
        source = self.extractor.extract_from_content(model_turn)

        if not source.strip():
            logger.warning(f"Extracted shader code for variant {index} is empty. "
                           f"Full model response: {model_turn.text}")
            self.stats['empty_extractions'] += 1
            return 'skipped_empty_extraction'

        phase = await self.create_variant(index, source)
        if phase == SlotPhase.COMPILED:
            self.stats['variants_compiled'] += 1
        elif phase == SlotPhase.TIMED_OUT:
            self.stats['variants_timed_out'] += 1
        elif phase == SlotPhase.FAILED:
            self.stats['variants_failed'] += 1
        return phase.value if phase else 'skipped_bad_index'

    def _build_request(self) -> GenerationRequest:
        request = GenerationRequest(
            contents=list(self.messages),
            candidate_count=len(self.variants),
            safety_settings=list(DEFAULT_SAFETY_SETTINGS),
            tools=["google_search_retrieval"] if self.config.enable_search else None
        )
        if self.config.system_instruction and self.config.system_instruction.strip():
            request.system_instruction = self.config.system_instruction
        return request

    async def create_variant(self, index: int, source: str) -> Optional[SlotPhase]:
        """
        Bind ``source`` to slot ``index``.

        Returns:
            Final slot phase, or None when ``index`` is out of range
        """
        if index < 0 or index >= len(self.variants):
            logger.error(f"Index {index} is out of bounds for variants array.")
            return None

        return await self.poller.bind(self.variants[index], source)

    def clear(self):
        """Destroy every spawned object and material and reset all slots."""
        for slot in self.variants:
            self.poller.release(slot)
            slot.reset()

        self.messages.clear()
        self.messages_debug = ""
        logger.info("All variants cleared.")

    def render_conversation(self) -> str:
        """Plain-text rendering of the conversation history for debugging."""
        self.messages_debug = "\n\n".join(
            f"[{message.role}]\n{message.text}" for message in self.messages
        )
        return self.messages_debug

    def save_state(self, filepath: str):
        """Save the variant slots to a JSON file."""
        data = {
            "selected_variant": self.config.selected_variant,
            "variants": [slot.to_dict() for slot in self.variants]
        }

        with open(filepath, 'w') as f:
            json.dump(data, f, indent=2)

    def load_state(self, filepath: str):
        """Load variant slots saved by ``save_state``."""
        with open(filepath, 'r') as f:
            data = json.load(f)

        saved = [VariantSlot.from_dict(v) for v in data["variants"]]
        for slot in saved[:len(self.variants)]:
            slot.parent = self.variants[slot.index].parent
            self.variants[slot.index] = slot

    def _log_pass_results(self, results: Dict[str, Any]):
        """Log pass results to MLflow."""
        mlflow.log_metrics({
            "variants_compiled": results['compiled'],
            "variants_timed_out": results['timed_out'],
            "variants_failed": results['failed'],
            "variants_skipped": results['skipped'],
            "invocation_failures_total": self.stats['invocation_failures'],
            "no_candidates_total": self.stats['no_candidates']
        })

        for key, value in results.get('llm_stats', {}).items():
            if isinstance(value, (int, float)):
                mlflow.log_metric(f"llm_{key}", value)

        if self.config.log_artifacts:
            for slot in self.variants:
                if slot.phase == SlotPhase.COMPILED and slot.source_path:
                    try:
                        mlflow.log_artifact(slot.source_path, "shaders")
                    except Exception as e:
                        logger.warning(f"Failed to log shader artifact {slot.source_path}: {e}")

    def cleanup(self):
        """Clean up resources."""
        try:
            self.poller.pipeline.cleanup()
        except Exception as e:
            logger.warning(f"Error during asset pipeline cleanup: {e}")

        # End MLflow run if active
        try:
            if mlflow.active_run():
                mlflow.end_run()
        except Exception as e:
            logger.warning(f"Error ending MLflow run: {e}")


# Factory function for easy controller creation
def create_evolution_controller(llm_api_key: Optional[str] = None,
                                output_dir: str = "Assets/GeneratedShaders",
                                compiler_image: Optional[str] = None,
                                config: Optional[EvolutionConfig] = None,
                                experiment_name: str = "shaderevo_evolution",
                                mlflow_tracking_uri: Optional[str] = None) -> EvolutionController:
    """
    Factory function to create a complete evolution controller with all components.

    Args:
        llm_api_key: API key for Gemini (or use GOOGLE_API_KEY / .env)
        output_dir: Directory receiving generated shaders and materials
        compiler_image: Docker image used to compile shaders
        config: Evolution configuration
        experiment_name: Name for MLflow experiment
        mlflow_tracking_uri: MLflow tracking URI (if None, uses local tracking)

    Returns:
        Configured EvolutionController ready to run
    """
    import os
    from .poller import PollConfig
    from ..assets import DockerShaderPipeline, ManifestScene
    from ..llm import create_llm_client

    if config is None:
        config = EvolutionConfig(
            experiment_name=experiment_name,
            tracking_uri=mlflow_tracking_uri
        )
    else:
        if experiment_name != "shaderevo_evolution":  # Only override if explicitly provided
            config.experiment_name = experiment_name
        if mlflow_tracking_uri is not None:
            config.tracking_uri = mlflow_tracking_uri

    pipeline_kwargs = {"image_name": compiler_image} if compiler_image else {}
    pipeline = DockerShaderPipeline(output_dir, **pipeline_kwargs)
    scene = ManifestScene(os.path.join(output_dir, "scene.yaml"))
    poller = BuildAndBindPoller(pipeline, scene, PollConfig(output_dir=output_dir))

    return EvolutionController(
        llm_client=create_llm_client("gemini", api_key=llm_api_key),
        poller=poller,
        config=config
    )
