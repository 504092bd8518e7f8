"""
Entity definitions for the shaderevo evolutionary system.

This module contains the core data structures representing conversation
turns, generation requests/responses, compiled shader artifacts and the
variant slots that shaders get bound to.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, Optional, List


class Role(str, Enum):
    """Actor tag of a conversation turn."""
    USER = "user"
    MODEL = "model"


@dataclass
class Part:
    """A single text part of a conversation turn."""
    text: str = ""


@dataclass
class Content:
    """One conversation turn: an actor tag plus its content parts."""
    role: str
    parts: List[Part] = field(default_factory=list)

    @classmethod
    def user(cls, text: str) -> "Content":
        return cls(role=Role.USER.value, parts=[Part(text)])

    @classmethod
    def model(cls, text: str) -> "Content":
        return cls(role=Role.MODEL.value, parts=[Part(text)])

    @property
    def text(self) -> str:
        """All non-empty parts joined line by line."""
        return "\n".join(part.text for part in self.parts if part.text)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the wire shape accepted by the generation service."""
        return {"role": self.role, "parts": [part.text for part in self.parts]}


@dataclass
class GenerationRequest:
    """A request to the generation service, built fresh per variant."""
    contents: List[Content]
    candidate_count: int = 1
    safety_settings: List[Dict[str, str]] = field(default_factory=list)
    system_instruction: Optional[str] = None
    tools: Optional[List[Any]] = None


@dataclass
class GenerationResponse:
    """Zero or more candidate turns plus optional block-reason metadata."""
    candidates: List[Content] = field(default_factory=list)
    block_reason: Optional[str] = None

    @property
    def first(self) -> Optional[Content]:
        return self.candidates[0] if self.candidates else None


@dataclass
class CompiledArtifact:
    """A compiled, loadable shader produced by the asset pipeline."""
    name: str
    path: str
    errors: List[str] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)


@dataclass
class Material:
    """A persisted material asset bound to a compiled artifact."""
    name: str
    shader_name: str
    path: str


@dataclass
class SpawnedObject:
    """A renderable object instantiated into the scene for a variant."""
    name: str
    template: str
    parent: Optional[str] = None
    material_path: Optional[str] = None


class SlotPhase(str, Enum):
    """Build-and-bind phase of a variant slot."""
    IDLE = "idle"
    WRITING = "writing"
    AWAITING_COMPILE = "awaiting_compile"
    COMPILED = "compiled"
    TIMED_OUT = "timed_out"
    FAILED = "failed"  # asset pipeline error, slot left unbound


@dataclass
class VariantSlot:
    """
    One of the fixed set of generation targets.

    A live ``spawned_object`` always carries the material created for the
    slot's current ``artifact``; both are replaced together on regeneration.
    """
    index: int
    parent: Optional[str] = None
    spawned_object: Optional[SpawnedObject] = None
    source: str = ""
    shader_name: str = ""
    artifact: Optional[CompiledArtifact] = None
    source_path: Optional[str] = None
    material_path: Optional[str] = None
    phase: SlotPhase = SlotPhase.IDLE

    @property
    def is_bound(self) -> bool:
        return self.phase == SlotPhase.COMPILED and self.spawned_object is not None

    def reset(self):
        """Return to the initial empty state, keeping index and parent."""
        self.spawned_object = None
        self.source = ""
        self.shader_name = ""
        self.artifact = None
        self.source_path = None
        self.material_path = None
        self.phase = SlotPhase.IDLE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "parent": self.parent,
            "spawned_object": {
                "name": self.spawned_object.name,
                "template": self.spawned_object.template,
                "parent": self.spawned_object.parent,
                "material_path": self.spawned_object.material_path,
            } if self.spawned_object else None,
            "source": self.source,
            "shader_name": self.shader_name,
            "artifact": {
                "name": self.artifact.name,
                "path": self.artifact.path,
                "errors": self.artifact.errors,
            } if self.artifact else None,
            "source_path": self.source_path,
            "material_path": self.material_path,
            "phase": self.phase.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VariantSlot":
        spawned = data.get("spawned_object")
        artifact = data.get("artifact")
        return cls(
            index=data["index"],
            parent=data.get("parent"),
            spawned_object=SpawnedObject(**spawned) if spawned else None,
            source=data.get("source", ""),
            shader_name=data.get("shader_name", ""),
            artifact=CompiledArtifact(**artifact) if artifact else None,
            source_path=data.get("source_path"),
            material_path=data.get("material_path"),
            phase=SlotPhase(data.get("phase", SlotPhase.IDLE.value)),
        )
