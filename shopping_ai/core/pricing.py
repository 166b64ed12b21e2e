"""
Pricing calculations.

Turns token counts into a monetary cost using the registry's pricing table.
"""

from decimal import Decimal, ROUND_UP
from typing import Optional

from .registry import DEFAULT_REGISTRY, ProviderRegistry
from .token_counter import IMAGE_TOKEN_ESTIMATE, TokenUsage, estimate_tokens

# Costs are tracked to a millionth of a cent
COST_PRECISION = Decimal("0.00000001")


def calculate_cost(
    model: str,
    input_tokens: int,
    output_tokens: int,
    registry: ProviderRegistry = DEFAULT_REGISTRY
) -> float:
    """Calculate the cost of one interaction with conservative rounding.

    Args:
        model: Model identifier
        input_tokens: Prompt tokens sent to the model
        output_tokens: Completion tokens produced by the model
        registry: Registry holding the model's pricing

    Returns:
        Total cost, rounded UP to COST_PRECISION

    Raises:
        ConfigError: If model is not registered
        ValueError: If a token count is negative
    """
    if input_tokens < 0 or output_tokens < 0:
        raise ValueError("token counts cannot be negative")

    pricing = registry.resolve(model).pricing

    # (tokens / 1000) * cost_per_1k
    input_cost = (Decimal(input_tokens) / Decimal("1000")) * pricing.input_cost_per_1k
    output_cost = (Decimal(output_tokens) / Decimal("1000")) * pricing.output_cost_per_1k

    total_cost = input_cost + output_cost
    return float(total_cost.quantize(COST_PRECISION, rounding=ROUND_UP))


def resolve_usage(
    model: str,
    prompt: str,
    response_text: str,
    reported: Optional[TokenUsage] = None,
    has_image: bool = False,
    registry: ProviderRegistry = DEFAULT_REGISTRY
) -> TokenUsage:
    """Build the priced usage for one completed interaction.

    Provider-reported counts always win; the estimator is only a fallback.
    When counts are estimated for an image request, a fixed allowance for
    the image is added to the input side.

    Args:
        model: Model identifier
        prompt: Rendered prompt text that was sent
        response_text: Assistant text that came back
        reported: Counts reported by the provider, if any
        has_image: Whether the request carried an inline image
        registry: Registry holding the model's pricing

    Returns:
        TokenUsage with estimated_cost filled in
    """
    if reported is not None:
        input_tokens = reported.input_tokens
        output_tokens = reported.output_tokens
    else:
        input_tokens = estimate_tokens(prompt)
        if has_image:
            input_tokens += IMAGE_TOKEN_ESTIMATE
        output_tokens = estimate_tokens(response_text)

    cost = calculate_cost(model, input_tokens, output_tokens, registry)
    return TokenUsage(input_tokens=input_tokens, output_tokens=output_tokens, estimated_cost=cost)
