from __future__ import annotations

from typing import Callable, Optional

import pytest

from charpipe.client import SynthesisError
from charpipe.models import (
    Appearance,
    CharacterIdentity,
    GeneratedImage,
    SceneContext,
    StructuredPrompt,
)

HERO = CharacterIdentity(
    character_id="hero_01",
    appearance=Appearance(
        gender="female",
        hair="long black hair",
        eyes="brown",
        clothing="red scarf and leather jacket",
        age="young adult",
    ),
)


def make_prompt(action: str = "walking", identity: CharacterIdentity = HERO) -> StructuredPrompt:
    return StructuredPrompt(
        character_id=identity.character_id,
        appearance=identity.appearance,
        scene=SceneContext(context="somewhere", action=action),
        style="cinematic",
    )


class FakeSynthesizer:
    """Deterministic stand-in for the Gemini client.

    Invents a fresh character on every unpinned call (hero_01, hero_02, ...)
    and echoes the identity when one is supplied.
    """

    def __init__(
        self,
        fail_prompt_for: tuple[str, ...] = (),
        fail_image_for: tuple[str, ...] = (),
    ) -> None:
        self.fail_prompt_for = fail_prompt_for
        self.fail_image_for = fail_image_for
        self.prompt_calls: list[tuple[str, Optional[CharacterIdentity]]] = []
        self.image_calls: list[StructuredPrompt] = []
        self.before_prompt: Optional[Callable[[str], None]] = None
        self.before_image: Optional[Callable[[StructuredPrompt], None]] = None
        self._invented = 0

    async def synthesize_prompt(self, scene_text, identity=None):
        self.prompt_calls.append((scene_text, identity))
        if self.before_prompt:
            self.before_prompt(scene_text)
        if scene_text in self.fail_prompt_for:
            raise SynthesisError("The API returned an invalid JSON format.")
        if identity is None:
            self._invented += 1
            identity = CharacterIdentity(
                character_id=f"hero_{self._invented:02d}",
                appearance=Appearance(
                    gender="female",
                    hair=f"hair style {self._invented}",
                    eyes="brown",
                    clothing="red scarf",
                    age="young adult",
                ),
            )
        return StructuredPrompt(
            character_id=identity.character_id,
            appearance=identity.appearance,
            scene=SceneContext(context=f"context of {scene_text}", action=scene_text),
            style="cinematic, soft lighting",
        )

    async def synthesize_image(self, prompt):
        self.image_calls.append(prompt)
        if self.before_image:
            self.before_image(prompt)
        if prompt.scene.action in self.fail_image_for:
            raise SynthesisError("No image data found in the API response.")
        return GeneratedImage(data=f"png:{prompt.scene.action}".encode(), mime_type="image/png")


@pytest.fixture
def fake() -> FakeSynthesizer:
    return FakeSynthesizer()
