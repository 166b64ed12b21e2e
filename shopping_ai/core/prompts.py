"""
Prompt templates per task kind.

Built-in defaults can be overridden per task by a user template. Rendering
is literal ``{name}`` replacement, never template-language evaluation.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Mapping, Optional, Tuple

import structlog

from shopping_ai.storage.repository import KeyValueStore

logger = structlog.get_logger()

PROMPTS_KEY = "custom_prompts"

# Only identifier-shaped tokens are placeholders; JSON braces in a template are left alone
PLACEHOLDER_PATTERN = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


class TaskKind(Enum):
    """Logical purpose of one AI call."""
    TAX_RATE_LOOKUP = "taxRate"
    PRICE_TAG_IMAGE_ANALYSIS = "priceTagAnalysis"
    PRICE_GUESS = "priceGuessing"
    ADDITIVE_ANALYSIS = "additiveAnalysis"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @property
    def placeholders(self) -> Tuple[str, ...]:
        """Named values the task supplies to its template."""
        return _PLACEHOLDERS[self]


_DISPLAY_NAMES = {
    TaskKind.TAX_RATE_LOOKUP: "Tax Lookup",
    TaskKind.PRICE_TAG_IMAGE_ANALYSIS: "Image Analysis",
    TaskKind.PRICE_GUESS: "Price Guess",
    TaskKind.ADDITIVE_ANALYSIS: "Additive Analysis",
}

_PLACEHOLDERS = {
    TaskKind.TAX_RATE_LOOKUP: ("itemName", "locationContext"),
    TaskKind.PRICE_TAG_IMAGE_ANALYSIS: ("locationContext",),
    TaskKind.PRICE_GUESS: ("itemName", "brand", "additionalDetails", "storeName"),
    TaskKind.ADDITIVE_ANALYSIS: ("productName",),
}


DEFAULT_TEMPLATES: Dict[TaskKind, str] = {
    TaskKind.TAX_RATE_LOOKUP: (
        'Analyze the item "{itemName}". {locationContext}\n'
        'Respond with ONLY a valid JSON object in the format {"taxRate": <rate>}.\n'
        "The <rate> should be a number representing the sales tax percentage.\n"
        'If the item is not taxable or the name is ambiguous, return {"taxRate": null}.'
    ),
    TaskKind.PRICE_TAG_IMAGE_ANALYSIS: (
        "Analyze the image. {locationContext}\n"
        "Respond with ONLY a valid JSON object in the format:\n"
        '{"name": "<item_name>", "price": <price>, "taxRate": <tax_rate>, '
        '"taxDescription": "<description>", "ingredients": "<ingredients_list>"}\n'
        '- name: "Unknown Item" if not readable.\n'
        "- price: A number, or 0 if not readable.\n"
        "- taxRate: A number, or null if unknown.\n"
        '- taxDescription: "Unknown Taxes" if tax is unknown.\n'
        "- ingredients: A single string, or null if not visible."
    ),
    TaskKind.PRICE_GUESS: (
        'Find the price of "{itemName}" {brand} {additionalDetails} at {storeName}.\n'
        'Respond with ONLY a valid JSON object in the format {"estimatedPrice": <price>, "sourceURL": "<url>"}.\n'
        'If no price is found, return {"estimatedPrice": null, "sourceURL": null}.'
    ),
    TaskKind.ADDITIVE_ANALYSIS: (
        'Analyze the additives in "{productName}".\n'
        "Respond with ONLY a valid JSON object in the format:\n"
        '{"riskyAdditives": [{"name": "<name>", "riskLevel": "<level>", "description": "<desc>"}], '
        '"safeAdditives": [{"name": "<name>", "description": "<desc>"}]}\n'
        'If ingredients are unknown, return {"riskyAdditives": null, "safeAdditives": null}.'
    ),
}


def location_context(location: Optional[str]) -> str:
    """Sentence describing where the user is, for tax and price-tag prompts."""
    if location and location.strip():
        return f"The user is in {location.strip()}."
    return "No location provided."


def substitute(template: str, values: Mapping[str, str]) -> str:
    """Replace every ``{name}`` token; names missing from values become ''."""
    return PLACEHOLDER_PATTERN.sub(lambda match: values.get(match.group(1), ""), template)


@dataclass
class PromptTemplate:
    """User-editable template for one task kind."""
    body: str
    is_custom_enabled: bool = False


class PromptTemplateStore:
    """Holds the effective template for each task kind.

    When a KeyValueStore is supplied, templates are loaded from it on
    construction and written back after every completed edit.
    """

    def __init__(self, store: Optional[KeyValueStore] = None):
        self._store = store
        self._templates: Dict[TaskKind, PromptTemplate] = _default_templates()
        if store is not None:
            self._load()

    def get(self, task_kind: TaskKind) -> PromptTemplate:
        template = self._templates[task_kind]
        return PromptTemplate(body=template.body, is_custom_enabled=template.is_custom_enabled)

    def get_effective(self, task_kind: TaskKind) -> str:
        """Template text actually used for a task.

        Args:
            task_kind: Task to look up

        Returns:
            The custom template when enabled, otherwise the built-in default
        """
        template = self._templates[task_kind]
        if template.is_custom_enabled:
            return template.body
        return DEFAULT_TEMPLATES[task_kind]

    def render(self, task_kind: TaskKind, values: Mapping[str, str]) -> str:
        """Render the effective template for a task.

        Args:
            task_kind: Task whose template to render
            values: Placeholder name to replacement text

        Returns:
            Prompt text with no residual placeholder tokens
        """
        return substitute(self.get_effective(task_kind), values)

    def update(self, task_kind: TaskKind, body: str, is_custom_enabled: bool = True) -> None:
        if not body.strip():
            raise ValueError("template body cannot be empty")
        self._templates[task_kind] = PromptTemplate(body=body, is_custom_enabled=is_custom_enabled)
        self.persist()

    def reset(self, task_kind: TaskKind) -> None:
        """Restore the built-in default for one task and clear its enabled flag."""
        self._templates[task_kind] = PromptTemplate(body=DEFAULT_TEMPLATES[task_kind])
        self.persist()

    def reset_all(self) -> None:
        self._templates = _default_templates()
        self.persist()

    def persist(self) -> None:
        if self._store is None:
            return
        self._store.set(PROMPTS_KEY, {
            kind.value: {"template": template.body, "isCustomEnabled": template.is_custom_enabled}
            for kind, template in self._templates.items()
        })

    def _load(self) -> None:
        raw = self._store.get(PROMPTS_KEY)
        if not isinstance(raw, dict):
            return
        for key, entry in raw.items():
            try:
                kind = TaskKind(key)
            except ValueError:
                logger.warning("prompt_template_unknown_task", task=key)
                continue
            if not isinstance(entry, dict) or not isinstance(entry.get("template"), str):
                logger.warning("prompt_template_malformed", task=key)
                continue
            self._templates[kind] = PromptTemplate(
                body=entry["template"],
                is_custom_enabled=bool(entry.get("isCustomEnabled", False)),
            )


def _default_templates() -> Dict[TaskKind, PromptTemplate]:
    return {kind: PromptTemplate(body=body) for kind, body in DEFAULT_TEMPLATES.items()}
