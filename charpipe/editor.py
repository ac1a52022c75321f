"""Editable text form of structured prompts."""

from __future__ import annotations

import json

from charpipe.models import StructuredPrompt


class EditError(Exception):
    """Raised when user-edited prompt text is not a well-formed prompt."""


def format_prompt(prompt: StructuredPrompt) -> str:
    """Render a prompt as indented JSON for viewing or editing."""
    return json.dumps(prompt.to_dict(), indent=2, ensure_ascii=False)


def parse_edited_prompt(text: str) -> StructuredPrompt:
    """Parse edited prompt text back into a StructuredPrompt.

    Raises:
        EditError: If the text is empty, not JSON, or misses required fields.
    """
    if not text or not text.strip():
        raise EditError("Edited prompt is empty")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise EditError(f"Edited prompt is not valid JSON: {exc}") from exc
    try:
        return StructuredPrompt.from_dict(data)
    except ValueError as exc:
        raise EditError(f"Edited prompt is incomplete: {exc}") from exc
