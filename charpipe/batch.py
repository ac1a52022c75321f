"""Sequential batch pipeline with character pinning.

Drives every scene item through prompt synthesis and image synthesis,
one item at a time. The identity synthesized for item 0 is pinned and
handed to every later prompt synthesis call so the character stays the
same across the batch.
"""

from __future__ import annotations

import logging
from typing import Callable, Protocol

from charpipe.client import SynthesisError
from charpipe.models import (
    ANALYZING,
    COMPLETE,
    ERROR,
    GENERATING,
    PENDING,
    BatchContext,
    CharacterIdentity,
    GeneratedImage,
    SceneItem,
    StructuredPrompt,
)

logger = logging.getLogger(__name__)

# Allowed status transitions. Leaving a terminal state is only possible
# through an explicit single-item re-run.
_TRANSITIONS: dict[str, tuple[str, ...]] = {
    PENDING: (ANALYZING,),
    ANALYZING: (GENERATING, ERROR),
    GENERATING: (COMPLETE, ERROR),
    COMPLETE: (GENERATING,),
    ERROR: (GENERATING,),
}


class BatchStateError(Exception):
    """Raised when an operation is not allowed in the current batch state."""


class Synthesizer(Protocol):
    """The two AI capabilities the pipeline depends on."""

    async def synthesize_prompt(
        self, scene_text: str, identity: CharacterIdentity | None = None,
    ) -> StructuredPrompt: ...

    async def synthesize_image(self, prompt: StructuredPrompt) -> GeneratedImage: ...


ItemCallback = Callable[[SceneItem], None]
IdentityCallback = Callable[[CharacterIdentity], None]
ProgressCallback = Callable[[int, int, str], None]


def _transition(item: SceneItem, status: str) -> None:
    if status not in _TRANSITIONS.get(item.status, ()):
        raise BatchStateError(
            f"Scene {item.position}: illegal transition {item.status} -> {status}"
        )
    logger.debug("Scene %d: %s -> %s", item.position, item.status, status)
    item.status = status


class BatchPipeline:
    """Owns one batch and runs it against a synthesizer.

    Observers are optional callables:

    - ``on_item(item)`` after every status change of an item
    - ``on_identity(identity)`` once, when the identity is pinned
    - ``on_progress(processed, total, message)`` before each item, after
      each item and when the run finishes
    """

    def __init__(
        self,
        synthesizer: Synthesizer,
        on_item: ItemCallback | None = None,
        on_identity: IdentityCallback | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self.synthesizer = synthesizer
        self.context = BatchContext()
        self.on_item = on_item
        self.on_identity = on_identity
        self.on_progress = on_progress
        self._generation = 0
        self._running = False

    @property
    def generation(self) -> int:
        """Monotonic batch epoch, bumped by load() and reset()."""
        return self._generation

    @property
    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Batch lifecycle
    # ------------------------------------------------------------------

    def load(self, items: list[SceneItem], source: str = "") -> None:
        """Replace the batch wholesale with freshly parsed items."""
        self._generation += 1
        self._running = False
        self.context = BatchContext(items=items, source=source)
        logger.info("Loaded %d scenes from %s", len(items), source or "<memory>")

    def restore(self, context: BatchContext) -> None:
        """Adopt a previously saved batch (e.g. from status.json)."""
        self._generation += 1
        self._running = False
        self.context = context

    def reset(self) -> None:
        """Discard the batch, pinned identity and progress."""
        self._generation += 1
        self._running = False
        self.context = BatchContext()
        logger.info("Batch reset (generation %d)", self._generation)

    def _is_stale(self, generation: int) -> bool:
        if generation != self._generation:
            logger.info("Batch generation %d superseded; abandoning stale work", generation)
            return True
        return False

    def _notify_item(self, item: SceneItem) -> None:
        if self.on_item:
            self.on_item(item)

    def _notify_progress(self, message: str) -> None:
        if self.on_progress:
            self.on_progress(self.context.processed, self.context.total, message)

    # ------------------------------------------------------------------
    # Full run
    # ------------------------------------------------------------------

    async def run(self) -> BatchContext:
        """Process every item in order and return the batch context.

        Per-item synthesis failures are recorded on the item and do not stop
        the batch.

        Raises:
            BatchStateError: If the batch is empty, already running, or has
                already been processed.
        """
        ctx = self.context
        if not ctx.items:
            raise BatchStateError("No scenes loaded")
        if self._running:
            raise BatchStateError("A batch run is already in progress")
        if any(item.status != PENDING for item in ctx.items):
            raise BatchStateError("Batch has already been processed; reload it to run again")

        generation = self._generation
        self._running = True
        ctx.processed = 0
        try:
            for item in ctx.items:
                self._notify_progress(
                    f'Processing scene {item.position} of {ctx.total}: "{item.scene_text}"'
                )
                if not await self._process_item(ctx, item, generation):
                    return ctx
                ctx.processed += 1
                self._notify_progress(f"Scene {item.position} {item.status}")

            logger.info(
                "Batch complete: %d/%d scenes succeeded",
                sum(1 for item in ctx.items if item.is_success), ctx.total,
            )
            self._notify_progress(f"Batch processing complete. {ctx.total} scenes processed.")
        finally:
            if generation == self._generation:
                self._running = False
        return ctx

    async def _process_item(self, ctx: BatchContext, item: SceneItem, generation: int) -> bool:
        """Run one item to a terminal state. Returns False if the batch went stale."""
        _transition(item, ANALYZING)
        self._notify_item(item)
        try:
            prompt = await self.synthesizer.synthesize_prompt(item.scene_text, ctx.identity)
            if self._is_stale(generation):
                return False

            if item.id == 0:
                ctx.identity = prompt.identity
                logger.info("Pinned character %r", ctx.identity.character_id)
                if self.on_identity:
                    self.on_identity(ctx.identity)

            item.prompt = prompt
            _transition(item, GENERATING)
            self._notify_item(item)

            image = await self.synthesizer.synthesize_image(prompt)
            if self._is_stale(generation):
                return False

            item.image_bytes = image.data
            item.mime_type = image.mime_type
            item.error = None
            _transition(item, COMPLETE)
        except SynthesisError as exc:
            if self._is_stale(generation):
                return False
            logger.error("Error processing scene %d: %s", item.position, exc)
            item.error = str(exc)
            _transition(item, ERROR)

        self._notify_item(item)
        return True

    # ------------------------------------------------------------------
    # Single-item re-run
    # ------------------------------------------------------------------

    async def rerun_item(self, item_id: int, prompt: StructuredPrompt) -> SceneItem:
        """Re-render one item from an edited prompt, skipping prompt synthesis.

        The pinned identity and every other item are left untouched.

        Raises:
            KeyError: If item_id is not in the batch.
            BatchStateError: If a full run is in progress or the item has
                never been analyzed.
        """
        if self._running:
            raise BatchStateError("Cannot re-run a scene while the batch is running")
        item = self.context.get(item_id)
        if item.prompt is None:
            raise BatchStateError(f"Scene {item.position} has no prompt to edit yet")

        generation = self._generation
        _transition(item, GENERATING)
        item.prompt = prompt
        item.error = None
        self._notify_item(item)

        try:
            image = await self.synthesizer.synthesize_image(prompt)
            if self._is_stale(generation):
                return item
            item.image_bytes = image.data
            item.mime_type = image.mime_type
            _transition(item, COMPLETE)
        except SynthesisError as exc:
            if self._is_stale(generation):
                return item
            logger.error("Error regenerating scene %d: %s", item.position, exc)
            item.image_bytes = None
            item.error = str(exc)
            _transition(item, ERROR)

        self._notify_item(item)
        return item
