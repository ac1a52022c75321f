"""Batch persistence and image files.

The batch is saved to status.json after every item so that prompts can
be inspected, edited and re-rendered in a later invocation. Images are
written next to it under deterministic names.
"""

from __future__ import annotations

import json
import logging
import re
import shutil
from pathlib import Path

from charpipe.models import (
    ANALYZING,
    ERROR,
    GENERATING,
    STATUSES,
    BatchContext,
    CharacterIdentity,
    SceneItem,
    StructuredPrompt,
)

logger = logging.getLogger(__name__)

_EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/webp": ".webp",
}

_UNSAFE_CHARS = re.compile(r"[^\w.-]+")


class StatusError(Exception):
    """Raised when a saved status.json cannot be read back."""


def _safe_slug(value: str) -> str:
    """Reduce a model-chosen id to something usable inside a file name."""
    slug = _UNSAFE_CHARS.sub("_", value).lstrip(".")
    return slug or "unknown"


def image_filename(item: SceneItem, identity: CharacterIdentity | None) -> str:
    """Deterministic download name: scene_<character_id>_<position><ext>.

    Uses the pinned identity, falling back to the item's own prompt when
    nothing was pinned.
    """
    if identity is not None:
        character_id = identity.character_id
    elif item.prompt is not None:
        character_id = item.prompt.character_id
    else:
        character_id = "unknown"
    ext = _EXTENSIONS.get(item.mime_type, ".png")
    return f"scene_{_safe_slug(character_id)}_{item.position}{ext}"


def write_image(item: SceneItem, identity: CharacterIdentity | None, images_dir: Path) -> Path | None:
    """Write a completed item's image; returns the path or None if there is no image."""
    if not item.is_success or item.image_bytes is None:
        return None
    images_dir.mkdir(parents=True, exist_ok=True)
    path = images_dir / image_filename(item, identity)
    path.write_bytes(item.image_bytes)
    logger.info("Saved: %s (%.1f KB)", path, len(item.image_bytes) / 1024)
    return path


def save_status(status_path: Path, ctx: BatchContext, images_dir: Path) -> None:
    """Save the batch to status.json."""
    items = []
    for item in ctx.items:
        local_path = images_dir / image_filename(item, ctx.identity) if item.is_success else None
        items.append({
            "id": item.id,
            "scene": item.scene_text,
            "status": item.status,
            "prompt": item.prompt.to_dict() if item.prompt else None,
            "error": item.error,
            "mime_type": item.mime_type,
            "local_path": str(local_path) if local_path else None,
        })

    status = {
        "source": ctx.source,
        "identity": ctx.identity.to_dict() if ctx.identity else None,
        "processed": ctx.processed,
        "items": items,
    }
    status_path.parent.mkdir(parents=True, exist_ok=True)
    with open(status_path, "w", encoding="utf-8") as f:
        json.dump(status, f, indent=2, ensure_ascii=False)


def _context_from_status(data: dict) -> BatchContext:
    identity = data.get("identity")
    ctx = BatchContext(
        identity=CharacterIdentity.from_dict(identity) if identity else None,
        processed=int(data.get("processed", 0)),
        source=data.get("source", ""),
    )

    for raw in data.get("items", []):
        status = raw.get("status", "pending")
        if status not in STATUSES:
            raise ValueError(f"Unknown status {status!r}")
        prompt = raw.get("prompt")
        item = SceneItem(
            id=int(raw["id"]),
            scene_text=raw.get("scene", ""),
            prompt=StructuredPrompt.from_dict(prompt) if prompt else None,
            mime_type=raw.get("mime_type") or "image/png",
            status=status,
            error=raw.get("error"),
        )
        if item.status in (ANALYZING, GENERATING):
            item.status = ERROR
            item.error = item.error or "Interrupted"

        local_path = raw.get("local_path")
        if local_path and Path(local_path).exists():
            item.image_bytes = Path(local_path).read_bytes()
        ctx.items.append(item)

    return ctx


def load_status(status_path: Path) -> BatchContext | None:
    """Load a saved batch, or None if no status file exists.

    Items caught mid-flight by an interrupted run are marked as errors.

    Raises:
        StatusError: If the file is not valid JSON or does not describe a batch.
    """
    if not status_path.exists():
        return None
    try:
        with open(status_path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return _context_from_status(data)
    except (UnicodeDecodeError, json.JSONDecodeError, ValueError, KeyError, TypeError, AttributeError) as exc:
        raise StatusError(f"Corrupt status file {status_path}: {exc}") from exc


def export_images(ctx: BatchContext, dest_dir: Path) -> list[Path]:
    """Write every completed image into dest_dir."""
    written = []
    for item in ctx.items:
        path = write_image(item, ctx.identity, dest_dir)
        if path is not None:
            written.append(path)
    return written


def clear_batch(batch_dir: Path) -> bool:
    """Delete a batch's output directory. Returns False if there was nothing to delete."""
    if not batch_dir.exists():
        return False
    shutil.rmtree(batch_dir)
    logger.info("Removed %s", batch_dir)
    return True
