#!/usr/bin/env python3
"""
shaderevo Entrypoint - Run shader evolution from YAML configuration.

Commands mirror the manual triggers of the evolver:

    evolve  - run one evolution pass over every variant slot ("Evolve Code")
    clear   - destroy every spawned variant and reset the slots ("Clear All Variants")
    models  - list the Gemini models available to the configured key

Slot state is kept in a JSON file between invocations.

Usage:
    python run_evolution.py evolve config.yaml
    python run_evolution.py clear --config config.yaml
    python run_evolution.py evolve --config config.yaml --dry-run
"""

import argparse
import asyncio
import logging
import os
import sys
import yaml
from pathlib import Path
from typing import Dict, Any

from shaderevo.assets import DockerShaderPipeline, ManifestScene
from shaderevo.core import (
    BuildAndBindPoller,
    EvolutionController,
    EvolutionConfig,
    PollConfig,
    create_prompt_composer,
)
from shaderevo.llm import create_llm_client


COMMANDS = ("evolve", "clear", "models")


def setup_logging(level: str = "INFO"):
    """Setup basic logging configuration."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )


def create_evolution_config(config_dict: Dict[str, Any]) -> EvolutionConfig:
    """Create EvolutionConfig from configuration dictionary."""
    evolution_config = config_dict.get('evolution', {})
    mlflow_config = config_dict.get('mlflow', {})

    defaults = EvolutionConfig()
    return EvolutionConfig(
        num_variants=evolution_config.get('num_variants', defaults.num_variants),
        selected_variant=evolution_config.get('selected_variant', defaults.selected_variant),
        evolve_prompt=evolution_config.get('evolve_prompt', defaults.evolve_prompt),
        system_instruction=evolution_config.get('system_instruction', defaults.system_instruction),
        slot_parents=evolution_config.get('slot_parents', []),
        inter_slot_delay=evolution_config.get('inter_slot_delay', defaults.inter_slot_delay),
        enable_search=evolution_config.get('enable_search', defaults.enable_search),
        experiment_name=mlflow_config.get('experiment_name', defaults.experiment_name),
        log_artifacts=mlflow_config.get('log_artifacts', defaults.log_artifacts),
        tracking_uri=mlflow_config.get('tracking_uri')
    )


def create_poll_config(config_dict: Dict[str, Any]) -> PollConfig:
    """Create PollConfig from the 'assets' configuration section."""
    assets_config = config_dict.get('assets', {})
    defaults = PollConfig()

    return PollConfig(
        output_dir=assets_config.get('output_dir', defaults.output_dir),
        template=assets_config.get('template', defaults.template),
        poll_interval=assets_config.get('poll_interval', defaults.poll_interval),
        max_attempts=assets_config.get('max_attempts', defaults.max_attempts),
        reimport_every=assets_config.get('reimport_every', defaults.reimport_every)
    )


def create_llm_client_from_config(config_dict: Dict[str, Any]):
    """Create LLM client from configuration dictionary."""
    llm_config = config_dict.get('llm', {})

    provider = llm_config.get('provider', 'gemini')
    model_name = llm_config.get('model_name')
    llm_params = dict(llm_config.get('params', {}))

    # Handle API key
    api_key = llm_config.get('api_key')
    if api_key:
        llm_params['api_key'] = api_key
    if llm_config.get('env_file'):
        llm_params['env_file'] = llm_config['env_file']

    return create_llm_client(provider, model_name, **llm_params)


def create_poller_from_config(config_dict: Dict[str, Any]) -> BuildAndBindPoller:
    """Create the asset pipeline, scene and poller from configuration."""
    poll_config = create_poll_config(config_dict)
    compiler_config = config_dict.get('compiler', {})

    pipeline = DockerShaderPipeline(
        poll_config.output_dir,
        **compiler_config
    )
    scene = ManifestScene(os.path.join(poll_config.output_dir, "scene.yaml"))

    return BuildAndBindPoller(pipeline, scene, poll_config)


def state_file_path(config_dict: Dict[str, Any]) -> Path:
    poll_config = create_poll_config(config_dict)
    state_file = config_dict.get('state_file')
    return Path(state_file) if state_file else Path(poll_config.output_dir) / "variants.json"


def validate_config(config: Dict[str, Any]) -> None:
    """Validate the configuration dictionary."""
    if not isinstance(config, dict):
        raise ValueError("Configuration must be a mapping")

    evolution = config.get('evolution', {})
    num_variants = evolution.get('num_variants', 3)
    if not isinstance(num_variants, int) or num_variants < 1:
        raise ValueError("evolution.num_variants must be a positive integer")

    selected = evolution.get('selected_variant', 0)
    if not isinstance(selected, int) or not 0 <= selected < num_variants:
        raise ValueError("evolution.selected_variant must index an existing variant slot")

    assets = config.get('assets', {})
    for key in ('poll_interval', 'max_attempts', 'reimport_every'):
        if key in assets and assets[key] <= 0:
            raise ValueError(f"assets.{key} must be positive")


def build_controller(config: Dict[str, Any]) -> EvolutionController:
    """Create the controller and restore any saved slot state."""
    prompt_config = config.get('prompt_composer', {})

    controller = EvolutionController(
        llm_client=create_llm_client_from_config(config),
        poller=create_poller_from_config(config),
        prompt_composer=create_prompt_composer(**prompt_config),
        config=create_evolution_config(config)
    )

    state_file = state_file_path(config)
    if state_file.exists():
        controller.load_state(str(state_file))

    return controller


def run_command(command: str, config_file: Path, dry_run: bool = False) -> None:
    """Run one command against the configuration file."""
    # Load configuration
    try:
        with open(config_file, 'r') as f:
            config = yaml.safe_load(f) or {}
    except Exception as e:
        print(f"Error loading configuration file: {e}")
        sys.exit(1)

    # Validate configuration
    try:
        validate_config(config)
    except ValueError as e:
        print(f"Configuration error: {e}")
        sys.exit(1)

    setup_logging(config.get('log_level', 'INFO'))
    logger = logging.getLogger(__name__)

    if dry_run:
        print("Dry run mode - configuration validated successfully!")
        return

    if command == "models":
        llm_client = create_llm_client_from_config(config)
        for name in llm_client.list_models():
            print(name)
        return

    controller = None
    state_file = state_file_path(config)
    try:
        logger.info("Creating evolution components...")
        controller = build_controller(config)

        if command == "clear":
            controller.clear()
        else:
            results = asyncio.run(controller.evolve())
            print_results(controller, results)

        state_file.parent.mkdir(parents=True, exist_ok=True)
        controller.save_state(str(state_file))

    except KeyboardInterrupt:
        logger.info("Evolution interrupted by user")
        print("\nEvolution interrupted!")
        if controller is not None:
            state_file.parent.mkdir(parents=True, exist_ok=True)
            controller.save_state(str(state_file))
    except Exception as e:
        logger.error(f"{command} failed: {e}", exc_info=True)
        print(f"{command} failed: {e}")
        sys.exit(1)
    finally:
        if controller is not None:
            controller.cleanup()


def print_results(controller: EvolutionController, results: Dict[str, Any]) -> None:
    print("\n" + "=" * 60)
    print("Evolution Pass Complete!")
    print("=" * 60)

    print(f"Compiled: {results['compiled']}  Timed out: {results['timed_out']}  "
          f"Failed: {results['failed']}  "
          f"Skipped: {results['skipped']}")
    for slot, outcome in zip(controller.variants, results['outcomes']):
        status = "✓" if slot.is_bound else "✗"
        print(f"  Variant {slot.index + 1}: {status} {outcome} {slot.shader_name}")


def main():
    """Main entrypoint."""
    parser = argparse.ArgumentParser(
        description="Run shaderevo shader evolution",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run_evolution.py evolve config.yaml
  python run_evolution.py clear --config my_config.yaml
  python run_evolution.py evolve --config config.yaml --dry-run
  python run_evolution.py --example-config > example.yaml
        """
    )

    parser.add_argument(
        'command',
        nargs='?',
        choices=COMMANDS,
        default='evolve',
        help='Action to run (default: evolve)'
    )

    parser.add_argument(
        'config_file',
        nargs='?',
        type=Path,
        help='Path to YAML configuration file'
    )

    parser.add_argument(
        '--config', '-c',
        type=Path,
        help='Path to YAML configuration file (alternative to positional argument)'
    )

    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Validate configuration without running anything'
    )

    parser.add_argument(
        '--example-config',
        action='store_true',
        help='Print an example configuration file and exit'
    )

    args = parser.parse_args()

    if args.example_config:
        example_config_path = Path(__file__).parent / "config" / "example_config.yaml"
        try:
            with open(example_config_path, 'r') as f:
                print(f.read())
        except FileNotFoundError:
            print("Error: Example configuration file not found.")
            sys.exit(1)
        return

    # Determine config file
    config_file = args.config or args.config_file
    if not config_file:
        parser.error("Configuration file is required (provide as positional argument or with --config)")

    if not config_file.exists():
        print(f"Error: Configuration file not found: {config_file}")
        sys.exit(1)

    run_command(args.command, config_file, dry_run=args.dry_run)


if __name__ == "__main__":
    main()
