import base64
import binascii
import logging
from typing import Any

import httpx
from pydantic import ValidationError

from watermark_proxy.config import Settings
from watermark_proxy.errors import (
    DecodeFailed,
    NoImageInResponse,
    ProviderError,
    ProviderUnavailable,
)
from watermark_proxy.schemas import GeminiResponse, ImagePayload, OpenAIImageResponse

logger = logging.getLogger(__name__)

GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
OPENAI_EDITS_URL = "https://api.openai.com/v1/images/edits"

INSTRUCTION_TEMPLATE = (
    "Remove {removal_text} from this image while preserving the original image quality and content. "
    "Keep the image exactly the same except for removing the {removal_text}."
)

GEMINI_GENERATION_CONFIG: dict[str, Any] = {
    "temperature": 1.0,
    "topP": 0.95,
    "topK": 40,
    "maxOutputTokens": 8192,
    "responseModalities": ["Text", "Image"],
}

_UPLOAD_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/webp": "webp",
}


def build_instruction(removal_text: str) -> str:
    return INSTRUCTION_TEMPLATE.format(removal_text=removal_text)


def decode_image(image_b64: str) -> bytes:
    try:
        content = base64.b64decode(image_b64, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecodeFailed("Provider returned image data that is not valid base64", details=str(exc)) from exc
    if not content:
        raise DecodeFailed("Provider returned an empty image")
    return content


def extract_gemini_image(payload: Any) -> str:
    try:
        response = GeminiResponse.model_validate(payload)
    except ValidationError as exc:
        raise ProviderError("Gemini returned a malformed response", provider="Gemini", body=str(exc)) from exc

    candidate = (response.candidates or [None])[0]
    parts = (candidate.content.parts if candidate and candidate.content else None) or []
    for part in parts:
        if part.inline_data and part.inline_data.data:
            return part.inline_data.data
    raise NoImageInResponse("Gemini")


def extract_openai_image(payload: Any) -> str:
    try:
        response = OpenAIImageResponse.model_validate(payload)
    except ValidationError as exc:
        raise ProviderError("OpenAI returned a malformed response", provider="OpenAI", body=str(exc)) from exc

    first = (response.data or [None])[0]
    if first is None or not first.b64_json:
        raise NoImageInResponse("OpenAI")
    return first.b64_json


class ImageRemovalProvider:
    """One hosted model that can edit an image according to a text instruction."""

    name = "provider"
    key_name = ""

    def __init__(
        self,
        api_key: str | None,
        model: str,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def _ensure_api_key(self) -> str:
        if not self.api_key:
            raise ProviderUnavailable(f"{self.name} API key not found in {self.key_name}")
        return self.api_key

    def _raise_for_status(self, response: httpx.Response) -> None:
        if response.status_code < 300:
            return
        raise ProviderError(
            f"{self.name} failed to process image: {response.status_code} {response.reason_phrase}".rstrip(),
            provider=self.name,
            status_code=response.status_code,
            body=response.text,
        )

    async def _post(self, client: httpx.AsyncClient, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return await client.post(url, **kwargs)
        except httpx.HTTPError as exc:
            raise ProviderError(
                f"{self.name} request failed: {exc.__class__.__name__}",
                provider=self.name,
                body=str(exc),
            ) from exc

    def _json(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderError(
                f"{self.name} returned a non-JSON response",
                provider=self.name,
                status_code=response.status_code,
                body=response.text,
            ) from exc

    async def attempt(self, image: ImagePayload, removal_text: str) -> str:
        raise NotImplementedError


class GeminiProvider(ImageRemovalProvider):
    name = "Gemini"
    key_name = "GOOGLE_API_KEY"

    def build_request(self, image: ImagePayload, removal_text: str) -> dict[str, Any]:
        return {
            "contents": [
                {
                    "role": "user",
                    "parts": [
                        {"inline_data": {"mime_type": image.mime_type, "data": image.data}},
                        {"text": build_instruction(removal_text)},
                    ],
                }
            ],
            "generationConfig": GEMINI_GENERATION_CONFIG,
        }

    async def attempt(self, image: ImagePayload, removal_text: str) -> str:
        api_key = self._ensure_api_key()
        async with self._client() as client:
            response = await self._post(
                client,
                GEMINI_URL.format(model=self.model),
                params={"key": api_key},
                headers={"Content-Type": "application/json"},
                json=self.build_request(image, removal_text),
            )

        self._raise_for_status(response)
        return extract_gemini_image(self._json(response))


class OpenAIProvider(ImageRemovalProvider):
    name = "OpenAI"
    key_name = "OPENAI_API_KEY"

    async def attempt(self, image: ImagePayload, removal_text: str) -> str:
        api_key = self._ensure_api_key()
        try:
            content = base64.b64decode(image.data or "", validate=True)
        except (binascii.Error, ValueError) as exc:
            raise DecodeFailed("Uploaded image is not valid base64", details=str(exc)) from exc

        extension = _UPLOAD_EXTENSIONS.get(image.mime_type, "png")
        data = {
            "model": self.model,
            "prompt": build_instruction(removal_text),
            "n": "1",
            "quality": "medium",
        }
        files = [("image", (f"image.{extension}", content, image.mime_type))]

        async with self._client() as client:
            response = await self._post(
                client,
                OPENAI_EDITS_URL,
                headers={"Authorization": f"Bearer {api_key}"},
                data=data,
                files=files,
            )

        self._raise_for_status(response)
        return extract_openai_image(self._json(response))


def build_providers(
    settings: Settings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> list[ImageRemovalProvider]:
    return [
        GeminiProvider(settings.google_api_key, settings.gemini_model, settings.provider_timeout, transport),
        OpenAIProvider(settings.openai_api_key, settings.openai_image_model, settings.provider_timeout, transport),
    ]


async def remove_with_fallback(
    providers: list[ImageRemovalProvider],
    image: ImagePayload,
    removal_text: str,
) -> tuple[str, str]:
    """Try each configured provider in order and return ``(name, base64 image)``.

    Providers without a credential are skipped. When none has one,
    ``ProviderUnavailable`` is raised before any network call; otherwise the
    last provider failure propagates.
    """
    if not any(provider.configured for provider in providers):
        raise ProviderUnavailable("No image provider API key configured")

    failures: list[Exception] = []
    for provider in providers:
        if not provider.configured:
            logger.warning("Skipping %s: %s is not configured", provider.name, provider.key_name)
            continue
        try:
            image_b64 = await provider.attempt(image, removal_text)
        except Exception as exc:
            logger.warning("%s attempt failed: %s", provider.name, exc)
            failures.append(exc)
            continue
        return provider.name, image_b64

    raise failures[-1]
