"""
Shopping AI client.

Runs one dispatch per task: build the request, send it, extract and decode
the answer, price it, and record it in the ledger. Only a decoded answer
is recorded; failures leave the ledger untouched.
"""

import asyncio
from collections import Counter
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional

import httpx
import structlog

from ..config.loader import AISettings
from ..core.errors import (
    ConfigError,
    DecodeFailure,
    NoContentError,
    ShoppingAIError,
    TransportError,
)
from ..core.extraction import extract_content, extract_json_object, extract_usage
from ..core.ledger import UsageLedger
from ..core.pricing import resolve_usage
from ..core.prompts import PromptTemplateStore, TaskKind, location_context
from ..core.registry import DEFAULT_REGISTRY, ProviderRegistry
from ..core.request_builder import OutboundRequest, RequestBuilder
from ..core.results import (
    AdditiveAnalysisResult,
    PriceGuessResult,
    PriceTagInfo,
    TaskResult,
    TaxRateResult,
    decode_result,
)
from ..storage.models import InteractionRecord

logger = structlog.get_logger()

DEFAULT_TIMEOUT = 60.0
DEFAULT_STORE_NAME = "a major retailer"


class ShoppingAIClient:
    """Async client for the shopping-list AI tasks.

    Many dispatches may run concurrently; each suspends only while waiting
    on the network. Parsing and ledger updates happen after the response
    arrives with no further awaits, so a cancelled dispatch either records
    in full or not at all.
    """

    def __init__(
        self,
        settings: AISettings,
        ledger: UsageLedger,
        templates: Optional[PromptTemplateStore] = None,
        registry: ProviderRegistry = DEFAULT_REGISTRY,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        """Initialize the client.

        Args:
            settings: Model selection, credentials and tuning
            ledger: Ledger that completed interactions are recorded in
            templates: Prompt templates; built-in defaults when None
            registry: Model registry
            http_client: Transport to use; a private client is created when None
        """
        self.settings = settings
        self.ledger = ledger
        self.templates = templates or PromptTemplateStore()
        self.registry = registry
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=DEFAULT_TIMEOUT)

    async def __aenter__(self) -> "ShoppingAIClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    async def dispatch(
        self,
        task_kind: TaskKind,
        values: Dict[str, str],
        subject_name: Optional[str] = None,
        image: Optional[bytes] = None
    ) -> TaskResult:
        """Run one AI call end to end.

        Args:
            task_kind: Logical task
            values: Placeholder values for the task's prompt template
            subject_name: Item the call is about, kept on the record
            image: Optional image bytes for vision tasks

        Returns:
            The decoded task result

        Raises:
            ConfigError: Before any network traffic
            TransportError: Network or HTTP status failure
            NoContentError: No assistant text in the response
            DecodeFailure: Assistant text did not match the result shape
        """
        model_id = self.settings.model_for(task_kind)
        descriptor = self.registry.resolve(model_id)
        prompt = self.templates.render(task_kind, values)

        builder = RequestBuilder(
            credentials=self.settings.credentials(),
            registry=self.registry,
            max_tokens=self.settings.max_tokens,
            search_options=self.settings.search_options,
        )
        request = builder.build(task_kind, model_id, prompt, image)

        logger.info("ai_dispatch_start", task=task_kind.value, model=model_id, has_image=image is not None)
        raw_body = await self._send(request, model_id)

        content = extract_content(raw_body, model_id, self.registry)
        result = decode_result(task_kind, extract_json_object(content))

        usage = resolve_usage(
            model_id,
            prompt,
            content,
            reported=extract_usage(raw_body, model_id, self.registry),
            has_image=image is not None,
            registry=self.registry,
        )

        if subject_name is None and isinstance(result, PriceTagInfo):
            subject_name = result.name

        self.ledger.record(InteractionRecord(
            timestamp=datetime.now(),
            task_kind=task_kind,
            prompt_text=prompt,
            response_text=content,
            cost=usage.estimated_cost,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            subject_name=subject_name,
            provider_name=descriptor.provider_name,
            model_id=model_id,
        ))
        return result

    async def _send(self, request: OutboundRequest, model_id: str) -> bytes:
        try:
            response = await self._client.post(request.url, headers=request.headers, json=request.body)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error("ai_transport_status_error", model=model_id, status=status)
            raise TransportError(f"{model_id} request failed with HTTP {status}", status_code=status) from e
        except httpx.HTTPError as e:
            logger.error("ai_transport_error", model=model_id, error=str(e))
            raise TransportError(f"{model_id} request failed: {e}") from e

        logger.debug("ai_dispatch_response", model=model_id, size=len(response.content))
        return response.content

    async def _dispatch_soft(self, task_kind: TaskKind, values: Dict[str, str], **kwargs) -> Optional[TaskResult]:
        """Dispatch, turning NoContent/DecodeFailure into None."""
        try:
            return await self.dispatch(task_kind, values, **kwargs)
        except (NoContentError, DecodeFailure) as e:
            logger.warning("ai_no_usable_answer", task=task_kind.value, error=str(e))
            return None

    async def lookup_tax_rate(self, item_name: str, location: Optional[str] = None) -> Optional[TaxRateResult]:
        """Look up the sales tax rate for an item.

        A manual tax rate, when enabled, short-circuits the lookup. With
        more than one configured attempt, the attempts run concurrently and
        the most frequent rate wins.

        Returns:
            The tax result (rate may be None when indeterminate), or None
            when the model gave no usable answer
        """
        if self.settings.use_manual_tax_rate:
            return TaxRateResult(tax_rate=self.settings.manual_tax_rate)

        values = {"itemName": item_name, "locationContext": location_context(location)}
        attempts = self.settings.tax_detection_attempts
        if attempts <= 1:
            return await self._dispatch_soft(TaskKind.TAX_RATE_LOOKUP, values, subject_name=item_name)

        return await self._tax_rate_consensus(item_name, values, attempts)

    async def _tax_rate_consensus(self, item_name: str, values: Dict[str, str], attempts: int) -> Optional[TaxRateResult]:
        results = await asyncio.gather(
            *[self.dispatch(TaskKind.TAX_RATE_LOOKUP, values, subject_name=item_name) for _ in range(attempts)],
            return_exceptions=True,
        )

        rates: List[float] = []
        decoded = 0
        transport_error: Optional[TransportError] = None
        for attempt, result in enumerate(results, start=1):
            if isinstance(result, ConfigError):
                raise result
            if isinstance(result, BaseException) and not isinstance(result, ShoppingAIError):
                raise result
            if isinstance(result, TransportError):
                transport_error = result
            if isinstance(result, BaseException):
                logger.warning("tax_attempt_failed", item=item_name, attempt=attempt, error=str(result))
                continue
            decoded += 1
            if result.tax_rate is not None:
                rates.append(result.tax_rate)

        if rates:
            # Counter keeps first-seen order, so ties go to the earliest rate
            rate, occurrences = Counter(rates).most_common(1)[0]
            logger.info("tax_consensus", item=item_name, rate=rate, occurrences=occurrences, answers=len(rates))
            return TaxRateResult(tax_rate=rate)
        if decoded:
            return TaxRateResult(tax_rate=None)
        if transport_error is not None:
            raise transport_error
        return None

    async def analyze_price_tag(
        self,
        image: bytes,
        location: Optional[str] = None,
        lookup_tax: bool = True
    ) -> Optional[PriceTagInfo]:
        """Read the name and price from a price tag photo.

        When the tag shows no tax rate and the name is readable, a tax
        lookup follows; if that lookup fails the tag info is returned with
        its tax marked unknown.
        """
        values = {"locationContext": location_context(location)}
        info = await self._dispatch_soft(TaskKind.PRICE_TAG_IMAGE_ANALYSIS, values, image=image)
        if info is None or not lookup_tax or info.tax_rate is not None or not info.has_usable_name:
            return info

        try:
            tax = await self.lookup_tax_rate(info.name, location)
        except ShoppingAIError as e:
            logger.warning("price_tag_tax_lookup_failed", item=info.name, error=str(e))
            return replace(info, tax_description="Unknown Taxes")

        if tax is None or tax.tax_rate is None:
            return replace(info, tax_description="Unknown Taxes")

        source = "Auto-detected" if location else "Default rate"
        return replace(info, tax_rate=tax.tax_rate, tax_description=f"{tax.tax_rate}% ({source})")

    async def guess_price(
        self,
        item_name: str,
        location: Optional[str] = None,
        store_name: Optional[str] = None,
        brand: Optional[str] = None,
        additional_details: Optional[str] = None
    ) -> Optional[PriceGuessResult]:
        values = {
            "itemName": item_name,
            "brand": brand or "",
            "additionalDetails": additional_details or "",
            "storeName": store_name or DEFAULT_STORE_NAME,
            "locationContext": location_context(location),
        }
        return await self._dispatch_soft(TaskKind.PRICE_GUESS, values, subject_name=item_name)

    async def analyze_additives(self, product_name: str) -> Optional[AdditiveAnalysisResult]:
        values = {"productName": product_name}
        return await self._dispatch_soft(TaskKind.ADDITIVE_ANALYSIS, values, subject_name=product_name)
