"""Gemini image generation client."""

import logging
import mimetypes
import os

import httpx
from google import genai
from google.genai import errors, types

from config.defaults import DEFAULTS
from core.state import Artifact

MODEL = DEFAULTS["model"]
ASPECT_RATIO = DEFAULTS["aspect_ratio"]

log = logging.getLogger(__name__)


class GenerationError(RuntimeError):
    """The backend did not produce an image."""


class NoImageReturned(GenerationError):
    """The backend answered, but without any image part."""


def get_api_key():
    """Return the first API key found in the environment, or None."""
    for name in DEFAULTS["api_key_env"]:
        value = os.environ.get(name)
        if value:
            return value
    return None


def api_key_available():
    return get_api_key() is not None


def get_client(api_key=None):
    """Return a Gemini client. Raises if no API key is set."""
    api_key = api_key or get_api_key()
    if not api_key:
        raise RuntimeError(
            "GEMINI_API_KEY environment variable is not set. "
            "Get a key at https://aistudio.google.com/apikey and run:\n"
            "  export GEMINI_API_KEY='your-key-here'"
        )
    return genai.Client(api_key=api_key)


def load_image(path):
    """Read an image file into an Artifact, guessing the mime type from its name."""
    mime_type, _ = mimetypes.guess_type(path)
    if not mime_type or not mime_type.startswith("image/"):
        raise ValueError(f"Not an image file: {path}")
    with open(path, "rb") as f:
        data = f.read()
    if not data:
        raise ValueError(f"Image file is empty: {path}")
    return Artifact(data=data, mime_type=mime_type)


def save_artifact(artifact, path):
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "wb") as f:
        f.write(artifact.data)
    return path


def extract_image(response):
    """Return the first inline image of the first candidate as an Artifact."""
    candidates = getattr(response, "candidates", None) or []
    if candidates and candidates[0].content and candidates[0].content.parts:
        for part in candidates[0].content.parts:
            inline = getattr(part, "inline_data", None)
            if inline and inline.data:
                return Artifact(data=inline.data,
                                mime_type=inline.mime_type or "image/png")
    raise NoImageReturned("No image data found in response")


class GeminiImageGenerator:
    """Generation capability backed by a Gemini image model.

    generate() returns exactly one Artifact or raises GenerationError, also
    when no API key is configured or the request never reaches the backend.
    """

    def __init__(self, model=None, aspect_ratio=None, api_key=None, client=None):
        self.model = model or MODEL
        self.aspect_ratio = aspect_ratio or ASPECT_RATIO
        self._api_key = api_key
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = get_client(self._api_key)
        return self._client

    def _contents(self, instruction, reference_image):
        parts = []
        if reference_image is not None:
            parts.append(types.Part.from_bytes(
                data=reference_image.data, mime_type=reference_image.mime_type,
            ))
        parts.append(types.Part.from_text(text=instruction))
        return [types.Content(role="user", parts=parts)]

    def generate(self, instruction, reference_image=None):
        config = types.GenerateContentConfig(
            response_modalities=["IMAGE", "TEXT"],
            image_config=types.ImageConfig(aspect_ratio=self.aspect_ratio),
        )
        try:
            client = self.client
        except RuntimeError as e:
            raise GenerationError(str(e)) from e

        try:
            response = client.models.generate_content(
                model=self.model,
                contents=self._contents(instruction, reference_image),
                config=config,
            )
        except errors.APIError as e:
            raise GenerationError(f"Gemini request failed: {e}") from e
        except httpx.HTTPError as e:
            raise GenerationError(f"Gemini request did not complete: {e}") from e

        artifact = extract_image(response)
        log.debug("Received %d bytes of %s", len(artifact.data), artifact.mime_type)
        return artifact
