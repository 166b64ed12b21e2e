"""
Provider request construction.

Shapes one outbound HTTP request per dispatch. Shaping branches only on
the model's provider family, so adding a model is a registry entry.
"""

import base64
import io
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from PIL import Image, UnidentifiedImageError

from .errors import ConfigError, ConfigErrorReason
from .prompts import TaskKind
from .registry import (
    DEFAULT_REGISTRY,
    GEMINI_API_KEY_HEADER,
    ModelDescriptor,
    ProviderFamily,
    ProviderRegistry,
)

DEFAULT_MAX_TOKENS = 300
JPEG_QUALITY = 80
IMAGE_MIME_TYPE = "image/jpeg"


@dataclass(frozen=True)
class SearchOptions:
    """Web search tuning sent to search-capable providers for tax lookups."""
    search_context_size: str = "medium"
    search_recency_filter: Optional[str] = None

    def to_payload(self) -> Dict[str, str]:
        payload = {"search_context_size": self.search_context_size}
        if self.search_recency_filter:
            payload["search_recency_filter"] = self.search_recency_filter
        return payload


@dataclass(frozen=True)
class OutboundRequest:
    """A fully shaped HTTP POST, ready for the transport."""
    url: str
    headers: Dict[str, str]
    body: Dict[str, Any] = field(default_factory=dict)


def encode_image(image_bytes: bytes) -> str:
    """Re-encode an image as JPEG at fixed quality and base64 it.

    Args:
        image_bytes: Image in any format Pillow can read

    Returns:
        Base64 text of the JPEG bytes

    Raises:
        ValueError: If the bytes are not a readable image
    """
    try:
        with Image.open(io.BytesIO(image_bytes)) as image:
            converted = image.convert("RGB")
    except (UnidentifiedImageError, OSError) as e:
        raise ValueError(f"Unreadable image data: {e}") from e

    output = io.BytesIO()
    converted.save(output, format="JPEG", quality=JPEG_QUALITY)
    return base64.b64encode(output.getvalue()).decode("ascii")


class RequestBuilder:
    """Builds provider-shaped requests from a rendered prompt.

    Construction is pure: nothing is sent, nothing is persisted.
    """

    def __init__(
        self,
        credentials: Mapping[ProviderFamily, str],
        registry: ProviderRegistry = DEFAULT_REGISTRY,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        search_options: Optional[SearchOptions] = None
    ):
        if max_tokens <= 0:
            raise ValueError("max_tokens must be > 0")
        self._credentials = dict(credentials)
        self._registry = registry
        self._max_tokens = max_tokens
        self._search_options = search_options or SearchOptions()

    def build(
        self,
        task_kind: TaskKind,
        model_id: str,
        prompt: str,
        image: Optional[bytes] = None
    ) -> OutboundRequest:
        """Build the outbound request for one dispatch.

        Args:
            task_kind: Logical task being dispatched
            model_id: Selected model
            prompt: Rendered prompt text
            image: Optional raw image bytes to send inline

        Returns:
            OutboundRequest with URL, headers and JSON body

        Raises:
            ConfigError: Unknown model, image on a model without vision,
                or no credential for the model's provider family
            ValueError: If the image bytes cannot be read
        """
        descriptor = self._registry.resolve(model_id)

        if image is not None and not self._registry.supports_vision(model_id):
            raise ConfigError(
                f"Model {model_id} does not support image input.",
                ConfigErrorReason.UNSUPPORTED_MODALITY,
            )

        api_key = self._credentials.get(descriptor.provider_family, "")
        if not api_key:
            raise ConfigError(
                f"API key not configured for {model_id} ({descriptor.provider_name}).",
                ConfigErrorReason.MISSING_API_KEY,
            )

        image_data = encode_image(image) if image is not None else None

        if descriptor.provider_family == ProviderFamily.GEMINI_STYLE:
            headers = {GEMINI_API_KEY_HEADER: api_key}
            body = self._gemini_body(prompt, image_data)
        else:
            headers = {"Authorization": f"Bearer {api_key}"}
            body = self._chat_body(descriptor, task_kind, prompt, image_data)

        headers["Content-Type"] = "application/json"
        return OutboundRequest(url=descriptor.endpoint, headers=headers, body=body)

    def _gemini_body(self, prompt: str, image_data: Optional[str]) -> Dict[str, Any]:
        parts: list = [{"text": prompt}]
        if image_data is not None:
            parts.append({"inline_data": {"mime_type": IMAGE_MIME_TYPE, "data": image_data}})
        return {
            "contents": [{"parts": parts}],
            "generationConfig": {"maxOutputTokens": self._max_tokens},
        }

    def _chat_body(
        self,
        descriptor: ModelDescriptor,
        task_kind: TaskKind,
        prompt: str,
        image_data: Optional[str]
    ) -> Dict[str, Any]:
        if image_data is not None:
            content: Any = [
                {"type": "text", "text": prompt},
                {"type": "image_url", "image_url": {"url": f"data:{IMAGE_MIME_TYPE};base64,{image_data}"}},
            ]
        else:
            content = prompt

        body: Dict[str, Any] = {
            "model": descriptor.id,
            "messages": [{"role": "user", "content": content}],
            "max_tokens": self._max_tokens,
        }

        if (descriptor.provider_family == ProviderFamily.PERPLEXITY_STYLE
                and task_kind == TaskKind.TAX_RATE_LOOKUP
                and image_data is None):
            body["web_search_options"] = self._search_options.to_payload()

        return body
