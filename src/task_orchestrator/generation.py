"""AI text generation client used by the transform modules."""

import json
import re
from typing import Any, Protocol, runtime_checkable

import httpx
from loguru import logger

from .config import Settings
from .errors import GenerationError, MissingCredentialError

SERVICE_UNAVAILABLE_MESSAGE = "AI service is unavailable, please try again later"

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


@runtime_checkable
class ArtifactGenerator(Protocol):
    """Opaque long-running generation call.

    Must be safe to call again with identical input; resumption relies on it.
    """

    async def generate(
        self,
        prompt: str,
        *,
        system: str | None = None,
        response_format: str = "json",
    ) -> str: ...


class HTTPArtifactGenerator(ArtifactGenerator):
    """Posts prompts to a chat endpoint that holds the provider credentials.

    Request body: ``{"prompt", "system", "response_format", "model"}``.
    Response body: ``{"content": str}`` on success, or
    ``{"status": "error", "message": str}``.
    """

    def __init__(
        self,
        url: str,
        api_key: str | None,
        model: str = "gpt-4o",
        timeout: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.url: str = url
        self.api_key: str | None = api_key
        self.model: str = model
        self.timeout: float = timeout
        self._client: httpx.AsyncClient | None = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "HTTPArtifactGenerator":
        return cls(
            url=settings.generation_url,
            api_key=settings.generation_api_key,
            model=settings.generation_model,
            timeout=settings.generation_timeout,
        )

    async def generate(
        self,
        prompt: str,
        *,
        system: str | None = None,
        response_format: str = "json",
    ) -> str:
        if not self.api_key:
            raise MissingCredentialError("AI service API key is not configured")

        payload = {
            "prompt": prompt,
            "system": system,
            "response_format": response_format,
            "model": self.model,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}

        try:
            if self._client is not None:
                response = await self._client.post(
                    self.url, json=payload, headers=headers, timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.warning(f"Generation request to {self.url} failed: {e}")
            raise GenerationError(SERVICE_UNAVAILABLE_MESSAGE) from e

        if response.status_code in (401, 403):
            raise MissingCredentialError(
                f"AI service rejected the configured credentials (HTTP {response.status_code})"
            )

        data = _json_body(response)
        if response.is_error:
            raise GenerationError(str(data.get("message") or "Failed to generate content"))
        if data.get("status") == "error":
            raise GenerationError(str(data.get("message") or "Generation failed"))

        content = data.get("content")
        if not isinstance(content, str) or not content.strip():
            raise GenerationError("Generation response has no content")
        return content


def _json_body(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {"message": "Server error"}
    return data if isinstance(data, dict) else {}


def parse_json_artifact(content: str) -> dict[str, Any]:
    """Parse a JSON object out of generated text, tolerating markdown fences."""
    text = content.strip()
    match = _FENCE_RE.match(text)
    if match:
        text = match.group(1)
    try:
        value = json.loads(text)
    except json.JSONDecodeError as e:
        raise GenerationError(f"Failed to parse generated content as JSON: {e.msg}") from e
    if not isinstance(value, dict):
        raise GenerationError("Generated content is not a JSON object")
    return value
