"""
Session Ledger

The mutable record of one shared-space occupancy: who is present, what
they have consumed, and when the session started. A ledger is ACTIVE
until the settlement path completes it; after that every mutation raises
InvalidState.

The ledger knows nothing about inventory. Stock is checked and decremented
by the orchestrator before a product line is added here.
"""

import copy
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional
import structlog

from .money import Money
from ..errors import InvalidArgument, InvalidState, NotFound

logger = structlog.get_logger()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12].upper()}"


class SessionStatus(Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"


class LineItemKind(Enum):
    PRODUCT = "PRODUCT"
    TIME = "TIME"


@dataclass
class Individual:
    """One person counted in the session headcount."""
    id: str
    display_name: str
    is_primary_client: bool
    joined_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "display_name": self.display_name,
            "is_primary_client": self.is_primary_client,
            "joined_at": self.joined_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Individual":
        return cls(
            id=data["id"],
            display_name=data["display_name"],
            is_primary_client=bool(data.get("is_primary_client", False)),
            joined_at=datetime.fromisoformat(data["joined_at"]),
        )


@dataclass
class LineItem:
    """
    One billable line.

    `total_price` is derived on every read, so quantity and unit price can
    be edited independently without the total ever going stale.
    """
    id: str
    kind: LineItemKind
    name: str
    quantity: int
    unit_price: Money
    attributed_individual_name: Optional[str] = None
    product_id: Optional[str] = None

    def __post_init__(self):
        _check_quantity(self.quantity)
        _check_price(self.unit_price)

    @property
    def total_price(self) -> Money:
        return self.quantity * self.unit_price

    def copy(self, **changes: Any) -> "LineItem":
        item = copy.copy(self)
        for key, value in changes.items():
            setattr(item, key, value)
        item.__post_init__()
        return item

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "name": self.name,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "total_price": self.total_price,
            "attributed_individual_name": self.attributed_individual_name,
            "product_id": self.product_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LineItem":
        return cls(
            id=data["id"],
            kind=LineItemKind(data["kind"]),
            name=data["name"],
            quantity=data["quantity"],
            unit_price=data["unit_price"],
            attributed_individual_name=data.get("attributed_individual_name"),
            product_id=data.get("product_id"),
        )


def _check_quantity(quantity: int) -> None:
    if not isinstance(quantity, int) or quantity < 1:
        raise InvalidArgument(f"quantity must be a positive integer, got {quantity!r}")


def _check_price(unit_price: Money) -> None:
    if not isinstance(unit_price, int) or unit_price < 0:
        raise InvalidArgument(f"unit_price must be a non-negative integer amount, got {unit_price!r}")


@dataclass
class SessionLedger:
    """Live state of one session."""
    id: str
    invoice_id: str
    started_at: datetime
    primary_client_id: Optional[str] = None
    ended_at: Optional[datetime] = None
    individuals: List[Individual] = field(default_factory=list)
    product_items: List[LineItem] = field(default_factory=list)
    status: SessionStatus = SessionStatus.ACTIVE

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @classmethod
    def start(
        cls,
        primary_client_id: Optional[str],
        initial_individuals: List[str],
        now: Optional[datetime] = None,
    ) -> "SessionLedger":
        """Open a session; the first initial individual is the primary client."""
        if not initial_individuals:
            raise InvalidArgument("A session needs at least one individual")

        now = now or utcnow()
        ledger = cls(
            id=new_id("SES"),
            invoice_id=new_id("INV"),
            started_at=now,
            primary_client_id=primary_client_id,
        )
        ledger._append_individuals(initial_individuals, now, first_is_primary=True)

        logger.info(
            "session_started",
            session_id=ledger.id,
            client_id=primary_client_id,
            headcount=ledger.headcount,
        )
        return ledger

    def complete(self, now: Optional[datetime] = None) -> None:
        """ACTIVE -> COMPLETED. One-way."""
        self._require_active()
        self.ended_at = now or utcnow()
        self.status = SessionStatus.COMPLETED

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE

    @property
    def headcount(self) -> int:
        return len(self.individuals)

    def current_elapsed_seconds(self, now: Optional[datetime] = None) -> int:
        end = self.ended_at or now or utcnow()
        return max(0, math.floor((end - self.started_at).total_seconds()))

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    def add_individuals(self, names: List[str], now: Optional[datetime] = None) -> List[Individual]:
        self._require_active()
        if not names:
            raise InvalidArgument("No individuals to add")
        added = self._append_individuals(names, now or utcnow(), first_is_primary=False)
        logger.info("individuals_added", session_id=self.id, added=len(added), headcount=self.headcount)
        return added

    def remove_individuals(self, individual_ids: Iterable[str]) -> List[Individual]:
        """Drop individuals; never leaves an active session empty."""
        self._require_active()
        ids = set(individual_ids)
        known = {i.id for i in self.individuals}
        missing = ids - known
        if missing:
            raise NotFound(f"Individuals not in session {self.id}: {sorted(missing)}")
        if len(ids) >= len(self.individuals):
            raise InvalidState(
                "Removing every individual requires completing the session"
            )
        if any(i.is_primary_client and i.id in ids for i in self.individuals):
            raise InvalidState(
                "The primary client cannot leave while others stay; complete the session instead"
            )

        removed = [i for i in self.individuals if i.id in ids]
        self.individuals = [i for i in self.individuals if i.id not in ids]
        return removed

    def get_individual(self, individual_id: str) -> Individual:
        for individual in self.individuals:
            if individual.id == individual_id:
                return individual
        raise NotFound(f"Individual {individual_id} not in session {self.id}")

    def _append_individuals(
        self, names: List[str], now: datetime, first_is_primary: bool
    ) -> List[Individual]:
        added = []
        for offset, name in enumerate(names):
            position = len(self.individuals) + 1
            display_name = (name or "").strip() or f"Individual {position}"
            individual = Individual(
                id=new_id("IND"),
                display_name=display_name,
                is_primary_client=first_is_primary and offset == 0,
                joined_at=now,
            )
            self.individuals.append(individual)
            added.append(individual)
        return added

    # ------------------------------------------------------------------
    # Product items
    # ------------------------------------------------------------------

    def add_product_item(
        self,
        product_id: str,
        name: str,
        quantity: int,
        unit_price: Money,
        attributed_individual_name: Optional[str] = None,
    ) -> LineItem:
        self._require_active()
        item = LineItem(
            id=new_id("ITM"),
            kind=LineItemKind.PRODUCT,
            name=name,
            quantity=quantity,
            unit_price=unit_price,
            attributed_individual_name=attributed_individual_name,
            product_id=product_id,
        )
        self.product_items.append(item)
        logger.info(
            "product_item_added",
            session_id=self.id,
            item_id=item.id,
            product_id=product_id,
            quantity=quantity,
            total_price=item.total_price,
        )
        return item

    def update_product_item(
        self,
        item_id: str,
        quantity: Optional[int] = None,
        unit_price: Optional[Money] = None,
        attributed_individual_name: Optional[str] = None,
    ) -> LineItem:
        self._require_active()
        item = self.get_product_item(item_id)

        changes: Dict[str, Any] = {}
        if quantity is not None:
            changes["quantity"] = quantity
        if unit_price is not None:
            changes["unit_price"] = unit_price
        if attributed_individual_name is not None:
            changes["attributed_individual_name"] = attributed_individual_name or None

        # Validate on a copy so a bad edit leaves the live item untouched.
        updated = item.copy(**changes)
        self.product_items[self.product_items.index(item)] = updated
        return updated

    def remove_product_item(self, item_id: str) -> LineItem:
        self._require_active()
        item = self.get_product_item(item_id)
        self.product_items.remove(item)
        return item

    def reduce_product_item(self, item_id: str, quantity: int) -> Optional[LineItem]:
        """Take `quantity` units off an item; the item is dropped at zero."""
        self._require_active()
        item = self.get_product_item(item_id)
        remaining = item.quantity - quantity
        if remaining < 0:
            raise InvalidArgument(
                f"Cannot take {quantity} of item {item_id}, only {item.quantity} present"
            )
        if remaining == 0:
            self.product_items.remove(item)
            return None
        item.quantity = remaining
        return item

    def get_product_item(self, item_id: str) -> LineItem:
        for item in self.product_items:
            if item.id == item_id:
                return item
        raise NotFound(f"Line item {item_id} not in session {self.id}")

    @property
    def products_cost(self) -> Money:
        return sum(item.total_price for item in self.product_items)

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def snapshot(self) -> "SessionLedger":
        """Independent deep copy; mutate it freely and swap it in on success."""
        return copy.deepcopy(self)

    def _require_active(self) -> None:
        if self.status != SessionStatus.ACTIVE:
            raise InvalidState(f"Session {self.id} is {self.status.value}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "primary_client_id": self.primary_client_id,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "status": self.status.value,
            "headcount": self.headcount,
            "individuals": [i.to_dict() for i in self.individuals],
            "product_items": [item.to_dict() for item in self.product_items],
            "products_cost": self.products_cost,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionLedger":
        ended_at = data.get("ended_at")
        return cls(
            id=data["id"],
            invoice_id=data["invoice_id"],
            primary_client_id=data.get("primary_client_id"),
            started_at=datetime.fromisoformat(data["started_at"]),
            ended_at=datetime.fromisoformat(ended_at) if ended_at else None,
            status=SessionStatus(data.get("status", "ACTIVE")),
            individuals=[Individual.from_dict(i) for i in data.get("individuals", [])],
            product_items=[LineItem.from_dict(i) for i in data.get("product_items", [])],
        )
