"""
Configuration handling for find-malloc.
"""

from dataclasses import dataclass, field, fields as dataclass_fields
from typing import List, Optional, Tuple
import json
from pathlib import Path


WASI_MODULE = "wasi_snapshot_preview1"


def _default_anchors() -> List[Tuple[str, str]]:
    return [
        (WASI_MODULE, "environ_sizes_get"),
        (WASI_MODULE, "args_sizes_get"),
    ]


@dataclass
class Config:
    """Configuration options for find-malloc."""

    # Name the allocator is exported under
    export_name: str = "malloc"

    # Exports accepted as a mis-named allocator
    alias_export_names: List[str] = field(default_factory=lambda: ["dlmalloc"])

    # Debug names accepted as the allocator
    debug_names: List[str] = field(default_factory=lambda: ["malloc", "dlmalloc"])

    # Host imports called right before the allocator during startup,
    # tried in order
    anchors: List[Tuple[str, str]] = field(default_factory=_default_anchors)

    @classmethod
    def load(cls, path: Optional[Path] = None) -> 'Config':
        """Load configuration from a JSON file."""
        if path is None or not path.exists():
            return cls()

        with open(path, 'r') as f:
            data = json.load(f)

        # Convert camelCase to snake_case
        converted = {}
        for key, value in data.items():
            snake_key = ''.join(
                f'_{c.lower()}' if c.isupper() else c
                for c in key
            ).lstrip('_')
            converted[snake_key] = value

        # Filter to only include valid fields
        valid_fields = {f.name for f in dataclass_fields(cls)}
        filtered = {k: v for k, v in converted.items() if k in valid_fields}

        # JSON has no tuples
        if 'anchors' in filtered:
            filtered['anchors'] = [tuple(anchor) for anchor in filtered['anchors']]

        return cls(**filtered)

    def save(self, path: Path) -> None:
        """Save configuration to a JSON file."""
        # Convert snake_case to camelCase for compatibility
        data = {}
        for key, value in self.__dict__.items():
            camel_key = ''.join(
                word.capitalize() if i > 0 else word
                for i, word in enumerate(key.split('_'))
            )
            data[camel_key] = value

        with open(path, 'w') as f:
            json.dump(data, f, indent=2)
