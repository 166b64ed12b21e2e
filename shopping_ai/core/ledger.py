"""
Usage ledger.

Cumulative spend, interaction counts and a bounded display history.

The display history keeps only the most recent records, while the totals
are monotonic accumulators updated when a record is created. Clearing or
truncating the history never touches the totals; only ``reset_billing``
does.
"""

import threading
from dataclasses import dataclass, field, replace
from decimal import Decimal, ROUND_FLOOR
from typing import Any, Callable, Dict, List, Optional, Tuple

import structlog

from shopping_ai.storage.models import InteractionRecord
from shopping_ai.storage.repository import KeyValueStore
from .prompts import TaskKind

logger = structlog.get_logger()

HISTORY_LIMIT = 20

LEDGER_STATE_KEY = "ledger_state"
HISTORY_KEY = "prompt_history"

ZERO = Decimal("0")


def _to_decimal(amount: float) -> Decimal:
    # str() keeps the short decimal form of the float, e.g. 0.001 not 0.00100000000000000002
    return Decimal(str(amount))


@dataclass(frozen=True)
class CategoryUsage:
    """Accumulated usage for one task kind."""
    count: int
    cost: float

    @property
    def average_cost(self) -> Optional[float]:
        if self.count == 0:
            return None
        return float(_to_decimal(self.cost) / self.count)


@dataclass(frozen=True)
class LedgerState:
    """Persisted ledger scalars."""
    total_spent_all_time: Decimal = ZERO
    total_interaction_count: int = 0
    category_counts: Dict[TaskKind, int] = field(default_factory=dict)
    category_costs: Dict[TaskKind, Decimal] = field(default_factory=dict)
    budget_amount: Optional[Decimal] = None
    manual_spend_adjustment: Decimal = ZERO

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalSpentAllTime": str(self.total_spent_all_time),
            "totalInteractionCount": self.total_interaction_count,
            "categoryCounts": {kind.value: count for kind, count in self.category_counts.items()},
            "categoryCosts": {kind.value: str(cost) for kind, cost in self.category_costs.items()},
            "budgetAmount": None if self.budget_amount is None else str(self.budget_amount),
            "manualSpendAdjustment": str(self.manual_spend_adjustment),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LedgerState":
        budget = data.get("budgetAmount")
        return cls(
            total_spent_all_time=Decimal(data.get("totalSpentAllTime", "0")),
            total_interaction_count=int(data.get("totalInteractionCount", 0)),
            category_counts={
                TaskKind(kind): int(count)
                for kind, count in data.get("categoryCounts", {}).items()
            },
            category_costs={
                TaskKind(kind): Decimal(cost)
                for kind, cost in data.get("categoryCosts", {}).items()
            },
            budget_amount=None if budget is None else Decimal(budget),
            manual_spend_adjustment=Decimal(data.get("manualSpendAdjustment", "0")),
        )


_Snapshot = Tuple[LedgerState, List[InteractionRecord]]


class UsageLedger:
    """Durable usage and cost accounting.

    Every mutation is one critical section: the new state is computed,
    persisted in a single transaction, and only then published in memory.
    A failed write leaves both the store and the in-memory state unchanged.
    """

    def __init__(self, store: Optional[KeyValueStore] = None, history_limit: int = HISTORY_LIMIT):
        """Initialize the ledger, loading any persisted state.

        Args:
            store: Key-value store for persistence; in-memory only when None
            history_limit: Number of records retained for display
        """
        if history_limit < 1:
            raise ValueError("history_limit must be >= 1")
        self._store = store
        self._history_limit = history_limit
        self._lock = threading.Lock()
        self._state = LedgerState()
        self._history: List[InteractionRecord] = []
        if store is not None:
            self._load()

    # -- mutations -----------------------------------------------------

    def record(self, record: InteractionRecord) -> None:
        """Append a completed interaction and update every accumulator.

        Args:
            record: The interaction to record
        """
        cost = _to_decimal(record.cost)

        def add(state: LedgerState, history: List[InteractionRecord]) -> _Snapshot:
            counts = dict(state.category_counts)
            costs = dict(state.category_costs)
            counts[record.task_kind] = counts.get(record.task_kind, 0) + 1
            costs[record.task_kind] = costs.get(record.task_kind, ZERO) + cost
            new_state = replace(
                state,
                total_spent_all_time=state.total_spent_all_time + cost,
                total_interaction_count=state.total_interaction_count + 1,
                category_counts=counts,
                category_costs=costs,
            )
            return new_state, ([record] + history)[:self._history_limit]

        self._apply(add)
        logger.info(
            "ledger_record",
            task=record.task_kind.value,
            model=record.model_id,
            cost=record.cost,
            input_tokens=record.input_tokens,
            output_tokens=record.output_tokens,
        )

    def clear_display_history(self) -> None:
        """Empty the visible history; totals and categories are kept."""
        self._apply(lambda state, history: (state, []))

    def remove_record(self, record_id: str) -> bool:
        """Delete one record from the display history.

        Returns:
            True if a record was removed
        """
        removed = []

        def drop(state: LedgerState, history: List[InteractionRecord]) -> _Snapshot:
            remaining = [entry for entry in history if entry.id != record_id]
            removed.append(len(remaining) != len(history))
            return state, remaining

        self._apply(drop)
        return removed[-1]

    def reset_billing(self) -> None:
        """Zero totals, categories and the manual adjustment, and empty history.

        The budget is a user setting, not accumulated spend, and is kept.
        """
        self._apply(lambda state, history: (LedgerState(budget_amount=state.budget_amount), []))
        logger.info("ledger_billing_reset")

    def set_budget(self, amount: Optional[float]) -> None:
        if amount is not None and amount < 0:
            raise ValueError("budget cannot be negative")
        budget = None if amount is None else _to_decimal(amount)
        self._apply(lambda state, history: (replace(state, budget_amount=budget), history))

    def set_manual_adjustment(self, amount: float) -> None:
        adjustment = _to_decimal(amount)
        self._apply(lambda state, history: (replace(state, manual_spend_adjustment=adjustment), history))

    def set_total_spent_override(self, amount: float) -> None:
        """Make the reported total equal an external figure.

        Stores the adjustment needed so that tracked spend plus adjustment
        equals ``amount``; the per-category breakdown is kept as is.
        """
        target = _to_decimal(amount)

        def override(state: LedgerState, history: List[InteractionRecord]) -> _Snapshot:
            return replace(state, manual_spend_adjustment=target - state.total_spent_all_time), history

        self._apply(override)

    # -- projections ---------------------------------------------------

    @property
    def history(self) -> List[InteractionRecord]:
        """Retained records, newest first."""
        return list(self._history)

    @property
    def total_spent_all_time(self) -> float:
        return float(self._state.total_spent_all_time)

    @property
    def total_interaction_count(self) -> int:
        return self._state.total_interaction_count

    @property
    def manual_spend_adjustment(self) -> float:
        return float(self._state.manual_spend_adjustment)

    @property
    def budget_amount(self) -> Optional[float]:
        budget = self._state.budget_amount
        return None if budget is None else float(budget)

    @property
    def total_spent(self) -> float:
        """Tracked spend plus the manual adjustment."""
        return float(self._effective_spent())

    @property
    def remaining_budget(self) -> float:
        return float(self._remaining())

    @property
    def used_fraction(self) -> float:
        """Share of the budget used, clamped to [0, 1]; 0 without a budget."""
        budget = self._state.budget_amount
        if budget is None or budget <= 0:
            return 0.0
        fraction = self._effective_spent() / budget
        return float(min(Decimal("1"), max(ZERO, fraction)))

    def category_usage(self, category: TaskKind) -> CategoryUsage:
        state = self._state
        return CategoryUsage(
            count=state.category_counts.get(category, 0),
            cost=float(state.category_costs.get(category, ZERO)),
        )

    def average_cost(self, category: TaskKind) -> Optional[float]:
        return self.category_usage(category).average_cost

    def estimated_remaining_count(self, category: TaskKind) -> Optional[int]:
        """How many more calls of a category the remaining budget covers.

        Returns:
            The projected count, or None when unknown: no remaining budget,
            no history for the category, or a zero average cost
        """
        state = self._state
        remaining = self._remaining()
        count = state.category_counts.get(category, 0)
        if remaining <= 0 or count == 0:
            return None
        average = state.category_costs.get(category, ZERO) / count
        if average <= 0:
            return None
        return int((remaining / average).to_integral_value(rounding=ROUND_FLOOR))

    # -- internals -----------------------------------------------------

    def _effective_spent(self) -> Decimal:
        return self._state.total_spent_all_time + self._state.manual_spend_adjustment

    def _remaining(self) -> Decimal:
        budget = self._state.budget_amount or ZERO
        return max(ZERO, budget - self._effective_spent())

    def _apply(self, mutate: Callable[[LedgerState, List[InteractionRecord]], _Snapshot]) -> None:
        """Run one mutation as a single critical section.

        With a store, the mutation is applied to the persisted state read
        inside the write transaction, so other ledgers on the same database
        never lose updates. Memory is published only after the commit.
        """
        with self._lock:
            if self._store is None:
                self._state, self._history = mutate(self._state, self._history)
                return

            result = []

            def transform(current: Dict[str, Any]) -> Dict[str, Any]:
                state, history = self._decode(current)
                new_state, new_history = mutate(state, history)
                result.append((new_state, new_history))
                return {
                    LEDGER_STATE_KEY: new_state.to_dict(),
                    HISTORY_KEY: [entry.to_dict() for entry in new_history],
                }

            self._store.update([LEDGER_STATE_KEY, HISTORY_KEY], transform)
            self._state, self._history = result[-1]

    def _decode(self, stored: Dict[str, Any]) -> _Snapshot:
        raw_state = stored.get(LEDGER_STATE_KEY)
        state = LedgerState.from_dict(raw_state) if isinstance(raw_state, dict) else LedgerState()

        history = []
        for entry in stored.get(HISTORY_KEY) or []:
            try:
                history.append(InteractionRecord.from_dict(entry))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("ledger_history_entry_skipped", error=str(e))
        return state, history[:self._history_limit]

    def _load(self) -> None:
        self._state, self._history = self._decode(
            self._store.get_many([LEDGER_STATE_KEY, HISTORY_KEY])
        )
