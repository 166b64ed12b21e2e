"""
Response extraction.

Pulls the assistant text out of a provider response, then finds the JSON
object embedded in that text. Providers are told to answer in strict JSON
but routinely wrap it in prose or code fences, so extraction is liberal
while decoding (see results.py) stays strict.
"""

import json
from typing import Any, Optional, Union

import structlog

from .errors import NoContentError
from .registry import DEFAULT_REGISTRY, ProviderFamily, ProviderRegistry
from .token_counter import TokenUsage

logger = structlog.get_logger()

JSON_FENCE = "```json"
FENCE = "```"


def _parse_body(raw_body: Union[bytes, str]) -> Any:
    try:
        return json.loads(raw_body)
    except ValueError as e:
        raise NoContentError(f"Response body is not JSON: {e}") from e


def _dig(data: Any, *path: Union[str, int]) -> Any:
    """Follow a key/index path, returning None at the first missing step."""
    for step in path:
        if isinstance(step, int):
            if not isinstance(data, list) or len(data) <= step:
                return None
        elif not isinstance(data, dict) or step not in data:
            return None
        data = data[step]
    return data


def extract_content(
    raw_body: Union[bytes, str],
    model_id: str,
    registry: ProviderRegistry = DEFAULT_REGISTRY
) -> str:
    """Extract the assistant text from a raw provider response.

    Args:
        raw_body: HTTP response body
        model_id: Model the request was sent to
        registry: Registry used to find the model's provider family

    Returns:
        The assistant's text content

    Raises:
        ConfigError: If model_id is not registered
        NoContentError: If the body has no assistant text
    """
    family = registry.resolve(model_id).provider_family
    data = _parse_body(raw_body)

    if family == ProviderFamily.GEMINI_STYLE:
        content = _dig(data, "candidates", 0, "content", "parts", 0, "text")
    else:
        content = _dig(data, "choices", 0, "message", "content")

    if not isinstance(content, str) or not content.strip():
        raise NoContentError(f"No assistant content in {family.value} response from {model_id}")
    return content


def extract_usage(
    raw_body: Union[bytes, str],
    model_id: str,
    registry: ProviderRegistry = DEFAULT_REGISTRY
) -> Optional[TokenUsage]:
    """Extract provider-reported token counts, if the response has them.

    Returns:
        TokenUsage without cost, or None when counts are not reported
    """
    family = registry.resolve(model_id).provider_family
    try:
        data = _parse_body(raw_body)
    except NoContentError:
        return None

    if family == ProviderFamily.GEMINI_STYLE:
        input_tokens = _dig(data, "usageMetadata", "promptTokenCount")
        output_tokens = _dig(data, "usageMetadata", "candidatesTokenCount")
    else:
        input_tokens = _dig(data, "usage", "prompt_tokens")
        output_tokens = _dig(data, "usage", "completion_tokens")

    if not isinstance(input_tokens, int) or not isinstance(output_tokens, int):
        return None
    if input_tokens < 0 or output_tokens < 0:
        logger.warning("ai_usage_negative_counts", model=model_id)
        return None
    return TokenUsage(input_tokens=input_tokens, output_tokens=output_tokens)


def extract_json_object(text: str) -> str:
    """Find the JSON object inside free-form model output.

    A ```json fenced block wins; otherwise the span from the first '{' to
    the last '}' is taken. Without both brackets the trimmed text comes
    back unchanged and decoding will fail on it.

    Args:
        text: Assistant text content

    Returns:
        Best-effort JSON substring
    """
    trimmed = text.strip()

    fence_start = trimmed.find(JSON_FENCE)
    if fence_start != -1:
        content_start = fence_start + len(JSON_FENCE)
        fence_end = trimmed.find(FENCE, content_start)
        if fence_end != -1:
            return trimmed[content_start:fence_end].strip()

    start = trimmed.find("{")
    end = trimmed.rfind("}")
    if start == -1 or end == -1:
        return trimmed

    return trimmed[start:end + 1].strip()
