"""Remote generation client for the Gemini image model.

Each call is a single request with no retry: one failed call is one
failed job.
"""

import logging
from typing import Protocol

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from config import settings
from errors import RemoteError
from image_codec import ImageInput, decode_image_input

logger = logging.getLogger(__name__)


PRESERVE_PERSON = (
    "It's very important that you do NOT change the person's face, hair, body shape, "
    "or the background. Only change the clothes."
)

DESCRIPTION_PROMPT = (
    'Please replace the clothing on the person in this image with: "{instruction}". '
    + PRESERVE_PERSON
)

REFERENCE_PROMPT = (
    "Please dress the person in the first image in the outfit shown in the second image. "
    + PRESERVE_PERSON
)

REFERENCE_NOTES = ' Additional details about the outfit: "{instruction}".'

VARIATION_PREFIX = (
    "Create a fresh, creative variation rather than a literal repeat of a previous attempt. "
)

ENHANCE_PROMPT = (
    "Upscale this image to a higher resolution. Sharpen fine details such as fabric "
    "texture, hair and facial features and remove compression artifacts. Do NOT change "
    "the composition, the person, the clothing, the colors or the background."
)

NO_IMAGE_MESSAGE = "Image generation failed: No image data was returned by the API."


class RemoteGenerationClient(Protocol):
    """Interface consumed by the batch executor and post-processing."""

    async def generate(
        self,
        base: ImageInput,
        reference: ImageInput | None,
        instruction: str,
        variation: bool = False,
    ) -> bytes:
        ...

    async def enhance(self, image: ImageInput) -> bytes:
        ...


def build_prompt(instruction: str, has_reference: bool, variation: bool = False) -> str:
    """Compose the text part of a generation request."""
    instruction = instruction.strip()
    if has_reference:
        prompt = REFERENCE_PROMPT
        if instruction:
            prompt += REFERENCE_NOTES.format(instruction=instruction)
    else:
        prompt = DESCRIPTION_PROMPT.format(instruction=instruction)

    if variation:
        prompt = VARIATION_PREFIX + prompt
    return prompt


def _image_part(image: ImageInput) -> types.Part:
    return types.Part.from_bytes(data=decode_image_input(image), mime_type=image.media_type)


def extract_image(response) -> bytes:
    """Pull the first inline image out of a generate_content response.

    Raises:
        RemoteError: With the service's own explanation when it returned
            text instead of an image, otherwise with a generic reason
    """
    candidates = getattr(response, "candidates", None) or []
    parts = []
    if candidates and candidates[0].content is not None:
        parts = candidates[0].content.parts or []

    for part in parts:
        inline_data = getattr(part, "inline_data", None)
        if inline_data is not None and inline_data.data:
            return inline_data.data

    for part in parts:
        text = getattr(part, "text", None)
        if text:
            raise RemoteError(
                text,
                f"The AI could not generate an image. Reason: {text}",
            )

    feedback = getattr(response, "prompt_feedback", None)
    block_reason = getattr(feedback, "block_reason", None) if feedback is not None else None
    if block_reason:
        reason = f"Request was blocked ({getattr(block_reason, 'value', block_reason)})"
        raise RemoteError(reason, f"The AI could not generate an image. Reason: {reason}")

    raise RemoteError("no image", NO_IMAGE_MESSAGE)


class GeminiClient:
    """Async wrapper around the google-genai SDK."""

    def __init__(self, api_key: str | None = None, model: str | None = None, client=None):
        """Initialize the client.

        Args:
            api_key: API key (defaults to configured key)
            model: Image model name (defaults to configured model)
            client: Pre-built genai.Client, mainly for tests
        """
        self.api_key = api_key if api_key is not None else settings.gemini.api_key
        self.model = model or settings.gemini.model
        self._client = client

    def _get_client(self) -> genai.Client:
        if self._client is None:
            if not self.api_key:
                raise RemoteError("API key is not configured")
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def generate(
        self,
        base: ImageInput,
        reference: ImageInput | None,
        instruction: str,
        variation: bool = False,
    ) -> bytes:
        """Generate the model wearing the outfit.

        Args:
            base: The model photo
            reference: Optional outfit photo
            instruction: Outfit description
            variation: Ask for a creative reinterpretation

        Returns:
            The generated image bytes

        Raises:
            RemoteError: If the call fails or returns no image
        """
        contents = [_image_part(base)]
        if reference is not None:
            contents.append(_image_part(reference))
        contents.append(build_prompt(instruction, reference is not None, variation))
        return await self._call(contents)

    async def enhance(self, image: ImageInput) -> bytes:
        """Submit an already generated image for upscaling."""
        return await self._call([_image_part(image), ENHANCE_PROMPT])

    async def _call(self, contents: list) -> bytes:
        client = self._get_client()
        try:
            response = await client.aio.models.generate_content(
                model=self.model,
                contents=contents,
                config=types.GenerateContentConfig(
                    response_modalities=["IMAGE", "TEXT"],
                ),
            )
        except httpx.TransportError as e:
            logger.warning(f"Transport failure calling {self.model}: {e}")
            raise RemoteError("transport", f"API Error: network request failed ({e})") from e
        except genai_errors.APIError as e:
            logger.warning(f"{self.model} returned an error: {e.code} {e.message}")
            reason = e.message or str(e)
            raise RemoteError(reason, f"API Error: {reason}") from e
        except Exception as e:
            logger.exception(f"Unexpected error calling {self.model}")
            raise RemoteError(str(e), f"API Error: {e}") from e

        return extract_image(response)
