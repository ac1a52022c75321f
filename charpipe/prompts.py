"""Instruction templates and response schema sent to the Gemini models."""

from __future__ import annotations

import json

from charpipe.models import CharacterIdentity, StructuredPrompt

# Gemini responseSchema (OpenAPI subset, upper-case type names)
CHARACTER_PROMPT_SCHEMA: dict = {
    "type": "OBJECT",
    "properties": {
        "character_id": {
            "type": "STRING",
            "description": "A unique identifier for the character, like 'heroine_01' or 'main_character_alpha'.",
        },
        "appearance": {
            "type": "OBJECT",
            "properties": {
                "gender": {"type": "STRING", "description": "The character's gender (e.g., 'female', 'male', 'non-binary')."},
                "hair": {"type": "STRING", "description": "Description of the character's hair (e.g., 'long black hair', 'short blonde bob')."},
                "eyes": {"type": "STRING", "description": "The character's eye color (e.g., 'brown', 'blue')."},
                "clothing": {"type": "STRING", "description": "What the character is wearing (e.g., 'white dress', 'leather jacket')."},
                "age": {"type": "STRING", "description": "The apparent age of the character (e.g., 'young adult', 'teenager', 'middle-aged')."},
            },
            "required": ["gender", "hair", "eyes", "clothing", "age"],
        },
        "scene": {
            "type": "OBJECT",
            "properties": {
                "context": {"type": "STRING", "description": "The background or setting of the scene (e.g., 'sunset on the beach', 'bustling city street at night')."},
                "action": {"type": "STRING", "description": "What the character is doing (e.g., 'walking along the shore', 'reading a book')."},
            },
            "required": ["context", "action"],
        },
        "style": {
            "type": "STRING",
            "description": "The overall artistic style for the image (e.g., 'cinematic, soft lighting, 4k resolution', 'anime style, vibrant colors').",
        },
    },
    "required": ["character_id", "appearance", "scene", "style"],
}

_NEW_CHARACTER_INSTRUCTION = (
    "You are an expert creative assistant. Your task is to analyze a user's scene description "
    "and convert it into a structured JSON object. This JSON will be used to generate consistent "
    "character art. Identify the main character, their appearance, the scene context, and the "
    "artistic style. Ensure all fields in the JSON schema are populated based on the user's prompt. "
    "Invent a plausible 'character_id'."
)

_PINNED_CHARACTER_INSTRUCTION = (
    "You are an expert creative assistant. Your task is to analyze a new scene description for an "
    "existing character and generate a structured JSON object.\n"
    "**Use the following character definition PRECISELY for 'character_id' and 'appearance'**:\n"
    "{identity}\n"
    "Your job is to analyze the new scene description to populate ONLY the 'scene' and 'style' fields.\n"
    "**DO NOT, under any circumstances, alter the provided 'character_id' or 'appearance' object.**"
)

_IMAGE_INSTRUCTION = (
    "Generate an image based on the following JSON description. It is crucial to maintain character "
    "consistency based on the 'character_id' and 'appearance' fields. The final image should strictly "
    "adhere to all details in this JSON. \n\n{prompt}"
)


def system_instruction(identity: CharacterIdentity | None) -> str:
    """Pick the system instruction for prompt synthesis."""
    if identity is None:
        return _NEW_CHARACTER_INSTRUCTION
    return _PINNED_CHARACTER_INSTRUCTION.format(identity=json.dumps(identity.to_dict(), indent=2))


def scene_request(scene_text: str) -> str:
    return f'Analyze the following scene description and generate the corresponding JSON object: "{scene_text}"'


def image_request(prompt: StructuredPrompt) -> str:
    return _IMAGE_INSTRUCTION.format(prompt=json.dumps(prompt.to_dict(), indent=2))
