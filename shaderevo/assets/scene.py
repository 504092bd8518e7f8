"""
Scene holding the renderable objects spawned for variants.

The scene is a YAML manifest listing every spawned object with its parent
container, template and material, so whatever renders the variants can pick
them up from disk.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional

import yaml

from ..entities import Material, SpawnedObject


logger = logging.getLogger(__name__)


class ManifestScene:
    """Scene graph persisted as a YAML manifest."""

    def __init__(self, manifest_path: str):
        self.manifest_path = Path(manifest_path)
        self.objects: Dict[str, SpawnedObject] = {}
        if self.manifest_path.exists():
            self._load()

    def instantiate(self, template: str, parent: Optional[str], name: str) -> SpawnedObject:
        """Spawn a copy of ``template`` under ``parent``."""
        obj = SpawnedObject(name=name, template=template, parent=parent)
        self.objects[name] = obj
        self._save()
        logger.debug(f"Instantiated {template} as {name} under {parent}")
        return obj

    def destroy(self, obj: SpawnedObject) -> None:
        """Remove an object; unknown objects are ignored."""
        if self.objects.pop(obj.name, None) is not None:
            self._save()

    def assign_material(self, obj: SpawnedObject, material: Material) -> None:
        obj.material_path = material.path
        self.objects[obj.name] = obj
        self._save()

    def children_of(self, parent: Optional[str]) -> List[SpawnedObject]:
        return [obj for obj in self.objects.values() if obj.parent == parent]

    def _load(self):
        with open(self.manifest_path, 'r') as f:
            data = yaml.safe_load(f) or {}
        self.objects = {
            entry["name"]: SpawnedObject(**entry)
            for entry in data.get("objects", [])
        }

    def _save(self):
        self.manifest_path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "objects": [
                {
                    "name": obj.name,
                    "template": obj.template,
                    "parent": obj.parent,
                    "material_path": obj.material_path,
                }
                for obj in self.objects.values()
            ]
        }
        with open(self.manifest_path, 'w') as f:
            yaml.safe_dump(data, f, sort_keys=False)
