"""Scene file parser.

Loads a batch definition (JSON or YAML) and constructs the ordered list
of pending scene items.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

from charpipe.models import SceneItem

# Checked in this order on object entries
SCENE_KEYS = ("scene", "prompt", "description", "text")

_ACCEPTED_SHAPES = (
    'It must be a non-empty string, or an object with a "scene", "prompt", '
    '"description", or "text" property.'
)


class ValidationError(Exception):
    """Raised when a batch definition has the wrong shape."""

    def __init__(self, message: str, index: int | None = None):
        self.index = index
        super().__init__(message)


def _scene_text(entry: Any) -> str | None:
    """Return the trimmed description carried by one entry, if any."""
    if isinstance(entry, str):
        return entry.strip() or None
    if isinstance(entry, dict):
        for key in SCENE_KEYS:
            value = entry.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return None


def parse_scenes(raw: Any) -> list[SceneItem]:
    """Turn a decoded batch definition into pending scene items.

    Accepted shapes::

        ["a hero walks on the beach", "a hero sits by a fire"]

        [{"scene": "a hero walks on the beach"},
         {"description": "a hero sits by a fire"}]

    Args:
        raw: The decoded top-level value of the batch file.

    Returns:
        One pending SceneItem per entry, in input order.

    Raises:
        ValidationError: If the value is not a non-empty list, or any entry
            lacks a usable description. No items are produced in that case.
    """
    if not isinstance(raw, list):
        raise ValidationError("The root of the scene file must be an array `[]`.")
    if not raw:
        raise ValidationError("The scene array cannot be empty.")

    items: list[SceneItem] = []
    for index, entry in enumerate(raw):
        text = _scene_text(entry)
        if text is None:
            raise ValidationError(f"Item at index {index} is invalid. {_ACCEPTED_SHAPES}", index=index)
        items.append(SceneItem(id=index, scene_text=text))
    return items


def load_scenes(path: str | Path) -> list[SceneItem]:
    """Load and parse a scene file.

    ``.yaml``/``.yml`` files are read with PyYAML, everything else as JSON.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValidationError: If the file cannot be decoded or has the wrong shape.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Scene file not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            content = f.read()
        if path.suffix.lower() in (".yaml", ".yml"):
            raw = yaml.safe_load(content)
        else:
            raw = json.loads(content)
    except (UnicodeDecodeError, json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ValidationError(f"Error in {path.name}: could not decode file ({exc})") from exc

    try:
        return parse_scenes(raw)
    except ValidationError as exc:
        raise ValidationError(f"Error in {path.name}: {exc}", index=exc.index) from exc
