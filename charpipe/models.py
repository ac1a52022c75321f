"""Data models for the consistent-character batch pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field, replace

# Scene item lifecycle
PENDING = "pending"
ANALYZING = "analyzing"
GENERATING = "generating"
COMPLETE = "complete"
ERROR = "error"

STATUSES = (PENDING, ANALYZING, GENERATING, COMPLETE, ERROR)

APPEARANCE_FIELDS = ("gender", "hair", "eyes", "clothing", "age")


def _require_str(data: dict, key: str, where: str) -> str:
    value = data.get(key)
    if not isinstance(value, str):
        raise ValueError(f"'{where}{key}' must be a string, got {type(value).__name__}")
    return value


def _require_dict(data: dict, key: str) -> dict:
    value = data.get(key)
    if not isinstance(value, dict):
        raise ValueError(f"'{key}' must be an object, got {type(value).__name__}")
    return value


@dataclass(frozen=True)
class Appearance:
    """Visual attributes of a character."""
    gender: str
    hair: str
    eyes: str
    clothing: str
    age: str

    def to_dict(self) -> dict:
        return {name: getattr(self, name) for name in APPEARANCE_FIELDS}

    @classmethod
    def from_dict(cls, data: dict) -> Appearance:
        return cls(**{name: _require_str(data, name, "appearance.") for name in APPEARANCE_FIELDS})


@dataclass(frozen=True)
class CharacterIdentity:
    """The fixed character shared by every item of a batch.

    Attributes:
        character_id: Identifier such as 'heroine_01'.
        appearance: Visual attributes that must stay constant.
    """
    character_id: str
    appearance: Appearance

    def to_dict(self) -> dict:
        return {"character_id": self.character_id, "appearance": self.appearance.to_dict()}

    @classmethod
    def from_dict(cls, data: dict) -> CharacterIdentity:
        return cls(
            character_id=_require_str(data, "character_id", ""),
            appearance=Appearance.from_dict(_require_dict(data, "appearance")),
        )


@dataclass(frozen=True)
class SceneContext:
    context: str
    action: str

    def to_dict(self) -> dict:
        return {"context": self.context, "action": self.action}


@dataclass(frozen=True)
class StructuredPrompt:
    """Identity plus scene and style, consumed by image synthesis."""
    character_id: str
    appearance: Appearance
    scene: SceneContext
    style: str

    @property
    def identity(self) -> CharacterIdentity:
        return CharacterIdentity(character_id=self.character_id, appearance=self.appearance)

    def with_identity(self, identity: CharacterIdentity) -> StructuredPrompt:
        """Return a copy carrying the given identity."""
        return replace(self, character_id=identity.character_id, appearance=identity.appearance)

    def to_dict(self) -> dict:
        return {
            "character_id": self.character_id,
            "appearance": self.appearance.to_dict(),
            "scene": self.scene.to_dict(),
            "style": self.style,
        }

    @classmethod
    def from_dict(cls, data: dict) -> StructuredPrompt:
        """Build a prompt from a decoded JSON object.

        Raises:
            ValueError: If a required field is missing or not a string.
        """
        if not isinstance(data, dict):
            raise ValueError(f"Prompt must be a JSON object, got {type(data).__name__}")
        scene = _require_dict(data, "scene")
        return cls(
            character_id=_require_str(data, "character_id", ""),
            appearance=Appearance.from_dict(_require_dict(data, "appearance")),
            scene=SceneContext(
                context=_require_str(scene, "context", "scene."),
                action=_require_str(scene, "action", "scene."),
            ),
            style=_require_str(data, "style", ""),
        )


@dataclass
class GeneratedImage:
    """Raw image payload returned by image synthesis."""
    data: bytes
    mime_type: str = "image/png"


@dataclass
class SceneItem:
    """One scene of a batch, tracked through its own lifecycle.

    Attributes:
        id: Stable 0-based index within the batch.
        scene_text: Trimmed scene description.
        prompt: Structured prompt once synthesized (or edited).
        image_bytes: Rendered image once complete.
        mime_type: MIME type of image_bytes.
        status: One of "pending", "analyzing", "generating", "complete", "error".
        error: Error message if the last attempt failed.
    """
    id: int
    scene_text: str
    prompt: StructuredPrompt | None = None
    image_bytes: bytes | None = None
    mime_type: str = "image/png"
    status: str = PENDING
    error: str | None = None

    @property
    def position(self) -> int:
        """1-based position used for display and file names."""
        return self.id + 1

    @property
    def is_done(self) -> bool:
        """Whether the item has reached a terminal state."""
        return self.status in (COMPLETE, ERROR)

    @property
    def is_success(self) -> bool:
        return self.status == COMPLETE


@dataclass
class BatchContext:
    """Mutable state of one batch, owned by the pipeline.

    Attributes:
        items: Scene items in input order.
        identity: Character identity pinned from item 0, if any.
        processed: Number of items that reached a terminal state during the run.
        source: Where the batch was loaded from (informational).
    """
    items: list[SceneItem] = field(default_factory=list)
    identity: CharacterIdentity | None = None
    processed: int = 0
    source: str = ""

    @property
    def total(self) -> int:
        return len(self.items)

    def get(self, item_id: int) -> SceneItem:
        """Return the item with the given 0-based id.

        Raises:
            KeyError: If no such item exists.
        """
        if 0 <= item_id < len(self.items):
            return self.items[item_id]
        raise KeyError(f"No scene item with id {item_id} (batch has {len(self.items)} items)")
