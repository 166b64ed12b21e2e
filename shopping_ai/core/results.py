"""
Task result shapes.

One strict decoder per task kind. A ``None`` primary field is a valid
answer meaning the model could not determine a value; a shape mismatch is
a DecodeFailure.
"""

import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union

from .errors import DecodeFailure
from .prompts import TaskKind

UNKNOWN_ITEM_NAME = "Unknown Item"


@dataclass(frozen=True)
class TaxRateResult:
    tax_rate: Optional[float]

    @property
    def is_indeterminate(self) -> bool:
        return self.tax_rate is None


@dataclass(frozen=True)
class PriceTagInfo:
    """What the model read from a price tag image."""
    name: str
    price: float
    tax_rate: Optional[float] = None
    tax_description: Optional[str] = None
    ingredients: Optional[str] = None

    @property
    def has_usable_name(self) -> bool:
        return bool(self.name.strip()) and self.name != UNKNOWN_ITEM_NAME


@dataclass(frozen=True)
class PriceGuessResult:
    estimated_price: Optional[float]
    source_url: Optional[str] = None

    @property
    def is_indeterminate(self) -> bool:
        return self.estimated_price is None


@dataclass(frozen=True)
class AdditiveInfo:
    name: str
    description: str
    is_risky: bool
    risk_level: Optional[str] = None


@dataclass(frozen=True)
class AdditiveAnalysisResult:
    """Additives found in a product; both lists None when ingredients are unknown."""
    risky_additives: Optional[List[AdditiveInfo]]
    safe_additives: Optional[List[AdditiveInfo]]

    @property
    def is_indeterminate(self) -> bool:
        return self.risky_additives is None and self.safe_additives is None

    @property
    def risky_count(self) -> int:
        return len(self.risky_additives or [])

    @property
    def safe_count(self) -> int:
        return len(self.safe_additives or [])

    @property
    def all_additives(self) -> List[AdditiveInfo]:
        return list(self.risky_additives or []) + list(self.safe_additives or [])


TaskResult = Union[TaxRateResult, PriceTagInfo, PriceGuessResult, AdditiveAnalysisResult]


def _optional_number(data: Dict[str, Any], key: str) -> Optional[float]:
    value = data.get(key)
    if value is None:
        return None
    # bool is an int subclass but never a valid amount
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise DecodeFailure(f"'{key}' must be a number or null")
    return float(value)


def _required_number(data: Dict[str, Any], key: str) -> float:
    if key not in data:
        raise DecodeFailure(f"Missing required '{key}'")
    value = _optional_number(data, key)
    if value is None:
        raise DecodeFailure(f"'{key}' cannot be null")
    return value


def _optional_string(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise DecodeFailure(f"'{key}' must be a string or null")
    return value


def _required_string(data: Dict[str, Any], key: str) -> str:
    value = _optional_string(data, key)
    if value is None:
        raise DecodeFailure(f"Missing required '{key}'")
    return value


def _decode_tax_rate(data: Dict[str, Any]) -> TaxRateResult:
    return TaxRateResult(tax_rate=_optional_number(data, "taxRate"))


def _decode_price_tag(data: Dict[str, Any]) -> PriceTagInfo:
    return PriceTagInfo(
        name=_required_string(data, "name"),
        price=_required_number(data, "price"),
        tax_rate=_optional_number(data, "taxRate"),
        tax_description=_optional_string(data, "taxDescription"),
        ingredients=_optional_string(data, "ingredients"),
    )


def _decode_price_guess(data: Dict[str, Any]) -> PriceGuessResult:
    return PriceGuessResult(
        estimated_price=_optional_number(data, "estimatedPrice"),
        source_url=_optional_string(data, "sourceURL"),
    )


def _decode_additive_list(data: Dict[str, Any], key: str, is_risky: bool) -> Optional[List[AdditiveInfo]]:
    entries = data.get(key)
    if entries is None:
        return None
    if not isinstance(entries, list):
        raise DecodeFailure(f"'{key}' must be a list or null")

    additives = []
    for entry in entries:
        if not isinstance(entry, dict):
            raise DecodeFailure(f"Entries of '{key}' must be objects")
        additives.append(AdditiveInfo(
            name=_required_string(entry, "name"),
            description=_required_string(entry, "description"),
            is_risky=is_risky,
            risk_level=_optional_string(entry, "riskLevel") if is_risky else None,
        ))
    return additives


def _decode_additives(data: Dict[str, Any]) -> AdditiveAnalysisResult:
    return AdditiveAnalysisResult(
        risky_additives=_decode_additive_list(data, "riskyAdditives", is_risky=True),
        safe_additives=_decode_additive_list(data, "safeAdditives", is_risky=False),
    )


_DECODERS: Dict[TaskKind, Callable[[Dict[str, Any]], TaskResult]] = {
    TaskKind.TAX_RATE_LOOKUP: _decode_tax_rate,
    TaskKind.PRICE_TAG_IMAGE_ANALYSIS: _decode_price_tag,
    TaskKind.PRICE_GUESS: _decode_price_guess,
    TaskKind.ADDITIVE_ANALYSIS: _decode_additives,
}


def decode_result(task_kind: TaskKind, json_text: str) -> TaskResult:
    """Decode extracted JSON text into the task's result shape.

    Args:
        task_kind: Task whose shape is expected
        json_text: Text returned by extract_json_object

    Returns:
        The task-specific result

    Raises:
        DecodeFailure: If the text is not a JSON object of the expected shape
    """
    try:
        data = json.loads(json_text)
    except ValueError as e:
        raise DecodeFailure(f"Response is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise DecodeFailure("Response JSON must be an object")

    return _DECODERS[task_kind](data)
