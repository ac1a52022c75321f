"""Consistent-character batch image generation on top of Gemini."""

from charpipe.batch import BatchPipeline, BatchStateError, Synthesizer
from charpipe.client import GeminiClient, SynthesisError
from charpipe.editor import EditError
from charpipe.models import BatchContext, CharacterIdentity, SceneItem, StructuredPrompt
from charpipe.scene_parser import ValidationError, load_scenes, parse_scenes

__all__ = [
    "BatchPipeline",
    "BatchStateError",
    "Synthesizer",
    "GeminiClient",
    "SynthesisError",
    "EditError",
    "BatchContext",
    "CharacterIdentity",
    "SceneItem",
    "StructuredPrompt",
    "ValidationError",
    "load_scenes",
    "parse_scenes",
]
