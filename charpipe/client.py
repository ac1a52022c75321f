"""Async Gemini client built on the google-genai SDK.

Implements both synthesis capabilities used by the batch pipeline:
scene text -> structured prompt, and structured prompt -> image bytes.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from charpipe import prompts
from charpipe.models import CharacterIdentity, GeneratedImage, StructuredPrompt

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 120.0


class SynthesisError(Exception):
    """Raised when a synthesis call fails or returns unusable data."""

    def __init__(self, message: str, status_code: int | None = None, body: Any = None):
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class GeminiClient:
    """Async client for the Gemini text and image models.

    Usage::

        async with GeminiClient(api_key="...") as client:
            prompt = await client.synthesize_prompt("a hero walks on the beach")
            image = await client.synthesize_image(prompt)
    """

    def __init__(
        self,
        api_key: str,
        base_url: str | None = None,
        text_model: str = "gemini-2.5-pro",
        image_model: str = "gemini-2.5-flash-image",
        timeout: float = _DEFAULT_TIMEOUT,
        max_attempts: int = 1,
        client: genai.Client | None = None,
    ) -> None:
        self.text_model = text_model
        self.image_model = image_model
        self.max_attempts = max(1, int(max_attempts))
        # The SDK retries 429/5xx itself; attempts=1 means a single try.
        self.http_options = types.HttpOptions(
            base_url=base_url or None,
            timeout=int(timeout * 1000),
            retry_options=types.HttpRetryOptions(attempts=self.max_attempts),
        )
        self._client = client or genai.Client(api_key=api_key, http_options=self.http_options)

    @classmethod
    def from_config(cls, config: dict, api_key: str, **kwargs: Any) -> GeminiClient:
        """Build a client from the parsed config.yaml."""
        api = config.get("api", {})
        models = config.get("models", {})
        return cls(
            api_key=api_key,
            base_url=api.get("base_url"),
            text_model=models.get("text", "gemini-2.5-pro"),
            image_model=models.get("image", "gemini-2.5-flash-image"),
            timeout=float(api.get("timeout_seconds", _DEFAULT_TIMEOUT)),
            max_attempts=int(api.get("max_attempts", 1)),
            **kwargs,
        )

    async def __aenter__(self) -> GeminiClient:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying async transport."""
        await self._client.aio.aclose()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _generate_content(
        self,
        model: str,
        contents: str,
        config: types.GenerateContentConfig,
    ) -> list[types.Part]:
        """Call generate_content and return the parts of the first candidate."""
        try:
            response = await self._client.aio.models.generate_content(
                model=model, contents=contents, config=config,
            )
        except genai_errors.APIError as exc:
            raise SynthesisError(
                f"HTTP {exc.code}: {exc.message or exc.status}",
                status_code=exc.code,
                body=exc.details,
            ) from exc
        except httpx.HTTPError as exc:
            raise SynthesisError(f"Request failed: {exc}") from exc
        except (ValueError, TypeError) as exc:
            # SDK could not decode the body into a GenerateContentResponse
            raise SynthesisError(f"The API returned an unexpected response: {exc}") from exc

        if not isinstance(response, types.GenerateContentResponse):
            raise SynthesisError(
                f"The API returned an unexpected response type: {type(response).__name__}",
                body=response,
            )

        if not response.candidates:
            feedback = response.prompt_feedback
            reason = feedback.block_reason if feedback else None
            detail = f" (blocked: {reason})" if reason else ""
            raise SynthesisError(f"The API returned no candidates{detail}.")

        content = response.candidates[0].content
        if content is None or not content.parts:
            raise SynthesisError("The API returned an empty candidate.")
        return list(content.parts)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def synthesize_prompt(
        self,
        scene_text: str,
        identity: CharacterIdentity | None = None,
    ) -> StructuredPrompt:
        """Turn a scene description into a structured character prompt.

        Args:
            scene_text: Free-text scene description.
            identity: Pinned character identity to reuse, if any.

        Returns:
            A complete StructuredPrompt. When identity is given, the result
            carries exactly that identity.

        Raises:
            SynthesisError: On API errors or an unparseable response.
        """
        config = types.GenerateContentConfig(
            system_instruction=prompts.system_instruction(identity),
            response_mime_type="application/json",
            response_schema=prompts.CHARACTER_PROMPT_SCHEMA,
        )

        logger.info("Analyzing scene: %r (pinned=%s)", scene_text[:80], identity is not None)
        parts = await self._generate_content(self.text_model, prompts.scene_request(scene_text), config)
        json_text = "".join(part.text for part in parts if isinstance(part.text, str))

        try:
            prompt = StructuredPrompt.from_dict(json.loads(json_text))
        except (json.JSONDecodeError, ValueError) as exc:
            logger.error("Failed to parse JSON response: %s", json_text)
            raise SynthesisError(f"The API returned an invalid JSON format: {exc}", body=json_text) from exc

        if identity is not None and prompt.identity != identity:
            logger.warning(
                "Model altered the pinned character %r; restoring it", identity.character_id,
            )
            prompt = prompt.with_identity(identity)
        return prompt

    async def synthesize_image(self, prompt: StructuredPrompt) -> GeneratedImage:
        """Render a structured prompt into an image.

        Raises:
            SynthesisError: On API errors or when no image payload is returned.
        """
        config = types.GenerateContentConfig(response_modalities=["IMAGE"])

        logger.info("Generating image for %s: %r", prompt.character_id, prompt.scene.action[:80])
        parts = await self._generate_content(self.image_model, prompts.image_request(prompt), config)

        for part in parts:
            inline = part.inline_data
            if inline is not None and inline.data:
                mime_type = inline.mime_type or "image/png"
                logger.info("Image received (%s, %.1f KB)", mime_type, len(inline.data) / 1024)
                return GeneratedImage(data=inline.data, mime_type=mime_type)

        raise SynthesisError("No image data found in the API response.")
