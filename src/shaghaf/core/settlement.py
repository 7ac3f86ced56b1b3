"""
Settlement Engine

Turns live ledger state into billing line items, either for the whole
session (full settlement) or for a subset of individuals leaving early
together with some of the consumed products (partial settlement).

Partial exits re-price time for the exiting headcount alone, as if the
leaving group had been on its own since the session started. That is the
established billing rule at the front desk and is kept as is.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional
import structlog

from .ledger import LineItem, LineItemKind, SessionLedger, new_id
from .money import Money
from .pricing import PricingPolicy, compute_time_cost
from ..errors import InvalidArgument, InvalidState

logger = structlog.get_logger()

TIME_ITEM_NAME = "Shared space usage"


@dataclass
class SettlementResult:
    """Line items and total produced by one settlement event."""
    line_items: List[LineItem]
    total_amount: Money
    headcount: int
    elapsed_seconds: int
    time_cost: Money
    settled_at: datetime

    @property
    def products_cost(self) -> Money:
        return self.total_amount - self.time_cost

    def to_dict(self) -> Dict[str, Any]:
        return {
            "line_items": [item.to_dict() for item in self.line_items],
            "total_amount": self.total_amount,
            "headcount": self.headcount,
            "elapsed_seconds": self.elapsed_seconds,
            "time_cost": self.time_cost,
            "products_cost": self.products_cost,
            "settled_at": self.settled_at.isoformat(),
        }


@dataclass
class PartialSettlement:
    """Result of a partial exit: the exit bill plus the ledger left behind."""
    settlement: SettlementResult
    ledger: SessionLedger
    exiting_individual_ids: List[str] = field(default_factory=list)
    exiting_names: List[str] = field(default_factory=list)


@dataclass
class CostQuote:
    """Running estimate for display; nothing is settled."""
    headcount: int
    elapsed_seconds: int
    time_cost: Money
    products_cost: Money

    @property
    def total(self) -> Money:
        return self.time_cost + self.products_cost

    def to_dict(self) -> Dict[str, Any]:
        return {
            "headcount": self.headcount,
            "elapsed_seconds": self.elapsed_seconds,
            "time_cost": self.time_cost,
            "products_cost": self.products_cost,
            "total": self.total,
        }


def time_line_items(headcount: int, time_cost: Money, session_id: str) -> List[LineItem]:
    """
    Express a time cost as per-head line items.

    A single line (quantity = headcount) when the cost splits evenly;
    otherwise two lines, the remainder spread one minor unit per head, so
    quantity * unit_price holds exactly on every line.
    """
    if headcount < 1:
        raise InvalidState(f"Session {session_id} has no individuals to bill for time")

    share, remainder = divmod(time_cost, headcount)
    if remainder == 0:
        return [_time_item(headcount, share)]
    return [
        _time_item(headcount - remainder, share),
        _time_item(remainder, share + 1),
    ]


def _time_item(quantity: int, unit_price: Money) -> LineItem:
    return LineItem(
        id=new_id("TIM"),
        kind=LineItemKind.TIME,
        name=TIME_ITEM_NAME,
        quantity=quantity,
        unit_price=unit_price,
    )


def _total(items: Iterable[LineItem]) -> Money:
    total = 0
    for item in items:
        if item.kind in (LineItemKind.TIME, LineItemKind.PRODUCT):
            total += item.total_price
        else:
            raise InvalidArgument(f"Unknown line item kind: {item.kind}")
    return total


class SettlementEngine:
    """Computes full and partial bills against a pricing policy."""

    def __init__(self, policy: PricingPolicy):
        self.policy = policy

    def quote(self, ledger: SessionLedger, now: Optional[datetime] = None) -> CostQuote:
        elapsed = ledger.current_elapsed_seconds(now)
        return CostQuote(
            headcount=ledger.headcount,
            elapsed_seconds=elapsed,
            time_cost=compute_time_cost(ledger.headcount, elapsed, self.policy),
            products_cost=ledger.products_cost,
        )

    def settle_full(self, ledger: SessionLedger, now: datetime) -> SettlementResult:
        """
        Bill the whole session.

        Does not complete the ledger; the orchestrator does that once the
        invoice has been persisted.
        """
        if not ledger.is_active:
            raise InvalidState(f"Session {ledger.id} is already {ledger.status.value}")

        elapsed = ledger.current_elapsed_seconds(now)
        headcount = ledger.headcount
        time_cost = compute_time_cost(headcount, elapsed, self.policy)

        items = time_line_items(headcount, time_cost, ledger.id)
        items.extend(item.copy() for item in ledger.product_items)

        result = SettlementResult(
            line_items=items,
            total_amount=_total(items),
            headcount=headcount,
            elapsed_seconds=elapsed,
            time_cost=time_cost,
            settled_at=now,
        )

        logger.info(
            "session_settled",
            session_id=ledger.id,
            headcount=headcount,
            elapsed_seconds=elapsed,
            time_cost=time_cost,
            total_amount=result.total_amount,
        )
        return result

    def settle_partial(
        self,
        ledger: SessionLedger,
        now: datetime,
        exiting_individual_ids: Iterable[str],
        exiting_item_quantities: Optional[Mapping[str, int]] = None,
    ) -> PartialSettlement:
        """
        Bill a subset of individuals (and product quantities) leaving early.

        Works on a snapshot: the returned `ledger` is the post-exit state and
        the input ledger is left untouched.
        """
        if not ledger.is_active:
            raise InvalidState(f"Session {ledger.id} is already {ledger.status.value}")

        exiting_ids = list(dict.fromkeys(exiting_individual_ids))
        if not exiting_ids:
            raise InvalidArgument("A partial exit needs at least one individual")
        if len(exiting_ids) >= ledger.headcount:
            raise InvalidState(
                "Every remaining individual is leaving; complete the session instead"
            )

        remaining = ledger.snapshot()
        exiting_names = [remaining.get_individual(i).display_name for i in exiting_ids]

        elapsed = remaining.current_elapsed_seconds(now)
        time_cost = compute_time_cost(len(exiting_ids), elapsed, self.policy)
        items = time_line_items(len(exiting_ids), time_cost, ledger.id)

        for item_id, requested in (exiting_item_quantities or {}).items():
            item = remaining.get_product_item(item_id)
            exit_qty = max(0, min(item.quantity, int(requested)))
            if exit_qty == 0:
                continue
            items.append(item.copy(id=new_id("EXT"), quantity=exit_qty))
            remaining.reduce_product_item(item_id, exit_qty)

        remaining.remove_individuals(exiting_ids)

        result = SettlementResult(
            line_items=items,
            total_amount=_total(items),
            headcount=len(exiting_ids),
            elapsed_seconds=elapsed,
            time_cost=time_cost,
            settled_at=now,
        )

        logger.info(
            "partial_exit_settled",
            session_id=ledger.id,
            exiting=len(exiting_ids),
            remaining=remaining.headcount,
            time_cost=time_cost,
            total_amount=result.total_amount,
        )
        return PartialSettlement(
            settlement=result,
            ledger=remaining,
            exiting_individual_ids=exiting_ids,
            exiting_names=exiting_names,
        )
