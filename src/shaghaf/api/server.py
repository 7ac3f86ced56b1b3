"""
SHAGHAF - Production FastAPI Server

Front-desk API over the session orchestrator. Amounts in requests and
responses are integer minor units.

Endpoints:
- POST /sessions - Start a session
- POST /sessions/{id}/individuals - Add people
- POST /sessions/{id}/items - Sell a product into a session
- POST /sessions/{id}/partial-exit - Bill and release part of the group
- POST /sessions/{id}/complete - Close the session with its final invoice
- POST /invoices/{id}/payments - Record a payment
- GET /products/low-stock - Restock report
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import os
import structlog

from fastapi import FastAPI, HTTPException, Depends, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .. import __version__
from ..config import ShaghafConfig, configure_logging
from ..core.invoice import PaymentMethod
from ..core.ledger import SessionStatus, new_id
from ..errors import ErrorKind, ShaghafError
from ..persistence import (
    ClientRepository,
    Database,
    InvoiceRepository,
    ProductRecord,
    ProductRepository,
    SessionRepository,
)
from ..sessions import SessionOrchestrator, SessionResult

logger = structlog.get_logger()


# ============================================================================
# Pydantic Models
# ============================================================================

class StartSessionRequest(BaseModel):
    """Open a session for a known client or a walk-in."""
    individual_names: List[str] = Field(..., description="Names of the people present; the first is the primary client")
    client_id: Optional[str] = Field(None, description="Existing client")
    walk_in_name: Optional[str] = Field(None, description="Name for a new walk-in client")
    walk_in_phone: Optional[str] = None


class AddIndividualsRequest(BaseModel):
    names: List[str]


class AddProductRequest(BaseModel):
    """Sell a catalog product into a session."""
    product_id: str
    quantity: int = 1
    unit_price: Optional[int] = Field(None, description="Override of the catalog price, minor units")
    individual_name: Optional[str] = Field(None, description="Who the item is for")


class UpdateItemRequest(BaseModel):
    quantity: Optional[int] = None
    unit_price: Optional[int] = None
    individual_name: Optional[str] = Field(None, description="Empty string clears the attribution")


class PartialExitRequest(BaseModel):
    """Individuals leaving now and the product units they take with them."""
    individual_ids: List[str]
    item_quantities: Dict[str, int] = Field(default_factory=dict)


class PaymentRequest(BaseModel):
    method: str = Field(..., description="CASH, CARD or WALLET")
    amount: int = Field(..., description="Minor units")
    transaction_ref: Optional[str] = None


class CreateProductRequest(BaseModel):
    name: str
    price: int = Field(..., description="Minor units")
    stock_quantity: int = 0
    min_stock_level: int = 0
    category: Optional[str] = None
    unit: str = "piece"


class RestockRequest(BaseModel):
    quantity: int


class CreateClientRequest(BaseModel):
    name: str
    phone: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    active_sessions: int
    uptime_seconds: float


# ============================================================================
# Application State
# ============================================================================

class AppState:
    """Application state container."""

    def __init__(self, config: ShaghafConfig):
        self.config = config
        self.db = Database(config.database_url)
        self.db.initialize()

        self.clients = ClientRepository(self.db)
        self.products = ProductRepository(self.db)
        self.invoices = InvoiceRepository(self.db)
        self.orchestrator = SessionOrchestrator(
            policy=config.pricing,
            clients=self.clients,
            products=self.products,
            invoices=self.invoices,
            sessions=SessionRepository(self.db),
        )
        self.start_time = datetime.now(timezone.utc)

    def close(self) -> None:
        self.db.close()


app_state: Optional[AppState] = None


# ============================================================================
# Application Factory
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    global app_state
    config = ShaghafConfig.from_env()
    configure_logging(config.log_level, config.log_json)
    logger.info("shaghaf_starting", version=__version__, database_url=config.database_url)
    app_state = AppState(config)
    yield
    logger.info("shaghaf_stopping")
    app_state.close()
    app_state = None


class OutcomeError(Exception):
    """A non-OK orchestrator result on its way to an HTTP response."""

    def __init__(self, kind: str, message: Optional[str]):
        super().__init__(message)
        self.kind = kind
        self.message = message


_STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND.value: 404,
    ErrorKind.INVALID_STATE.value: 409,
    ErrorKind.INSUFFICIENT_STOCK.value: 409,
    ErrorKind.INVALID_ARGUMENT.value: 400,
}


def _error_response(kind: str, message: Optional[str]) -> JSONResponse:
    return JSONResponse(
        status_code=_STATUS_BY_KIND.get(kind, 400),
        content={"kind": kind, "message": message},
    )


def create_app(config: Optional[ShaghafConfig] = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    config = config or ShaghafConfig.from_env()
    application = FastAPI(
        title="Shaghaf",
        description="""
# Shared-Space Session Billing

Sessions are billed for time and products:
- **First hour** flat per person, then each started hour per person
- **Cap** on the additional-hours charge for the whole group
- **Partial exit** bills the leaving people on their own invoice
- **Payments** can be split across cash, card and wallet
        """,
        version=__version__,
        lifespan=lifespan,
    )

    # CORS middleware
    application.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @application.exception_handler(OutcomeError)
    async def outcome_error_handler(request: Request, exc: OutcomeError):
        return _error_response(exc.kind, exc.message)

    @application.exception_handler(ShaghafError)
    async def shaghaf_error_handler(request: Request, exc: ShaghafError):
        return _error_response(exc.kind.value, exc.message)

    return application


app = create_app()


# ============================================================================
# Dependencies
# ============================================================================

def get_state() -> AppState:
    """Get application state."""
    if app_state is None:
        raise HTTPException(status_code=503, detail="Application not initialized")
    return app_state


def verify_api_key(x_api_key: str = Header(..., alias="X-API-Key")) -> str:
    """Verify API key."""
    expected = app_state.config.api_key if app_state else os.environ.get("API_KEY", "dev-key-change-in-production")
    if x_api_key != expected:
        raise HTTPException(status_code=401, detail="Invalid API key")
    return x_api_key


def _unwrap(result: SessionResult) -> Any:
    if not result.ok:
        raise OutcomeError(result.outcome.value, result.error_message)
    return result.value


def _parse_status(status: Optional[str]) -> Optional[SessionStatus]:
    if status is None:
        return None
    try:
        return SessionStatus[status.upper()]
    except KeyError:
        raise OutcomeError(ErrorKind.INVALID_ARGUMENT.value, f"Invalid session status: {status}")


# ============================================================================
# System
# ============================================================================

@app.get("/health", response_model=HealthResponse, tags=["System"])
async def health_check(state: AppState = Depends(get_state)):
    """Health check endpoint."""
    uptime = (datetime.now(timezone.utc) - state.start_time).total_seconds()
    return HealthResponse(
        status="healthy",
        version=__version__,
        active_sessions=state.orchestrator.get_metrics()["active_sessions"],
        uptime_seconds=uptime,
    )


@app.get("/pricing", tags=["System"])
async def get_pricing(state: AppState = Depends(get_state)):
    """Current pricing policy."""
    return {"currency": state.config.currency, **state.config.pricing.to_dict()}


@app.get("/metrics", tags=["Monitoring"])
async def get_metrics(
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    return {
        "sessions": state.orchestrator.get_metrics(),
        "low_stock_products": len(state.products.list_low_stock()),
    }


# ============================================================================
# Sessions
# ============================================================================

@app.post("/sessions", status_code=201, tags=["Sessions"])
async def start_session(
    request: StartSessionRequest,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    """
    Start a session.

    Either `client_id` or `walk_in_name` is required; a walk-in gets a
    client record with a one-day membership.
    """
    ledger = _unwrap(state.orchestrator.start_session(
        request.individual_names,
        client_id=request.client_id,
        walk_in_name=request.walk_in_name,
        walk_in_phone=request.walk_in_phone,
    ))
    return ledger.to_dict()


@app.get("/sessions", tags=["Sessions"])
async def list_sessions(
    status: Optional[str] = None,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    sessions = state.orchestrator.list_sessions(_parse_status(status))
    return {
        "total": len(sessions),
        "sessions": [s.to_dict() for s in sessions],
    }


@app.get("/sessions/stats", tags=["Sessions"])
async def session_stats(
    status: str = "ACTIVE",
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    """Counts and revenue estimate over active or completed sessions."""
    return state.orchestrator.session_stats(_parse_status(status)).to_dict()


@app.get("/sessions/{session_id}", tags=["Sessions"])
async def get_session(
    session_id: str,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    return _unwrap(state.orchestrator.get_session(session_id)).to_dict()


@app.get("/sessions/{session_id}/quote", tags=["Sessions"])
async def quote_session(
    session_id: str,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    """Running cost of the session at this moment."""
    return _unwrap(state.orchestrator.quote(session_id)).to_dict()


@app.post("/sessions/{session_id}/individuals", tags=["Sessions"])
async def add_individuals(
    session_id: str,
    request: AddIndividualsRequest,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    return _unwrap(state.orchestrator.add_individuals(session_id, request.names)).to_dict()


@app.post("/sessions/{session_id}/items", tags=["Sessions"])
async def add_product(
    session_id: str,
    request: AddProductRequest,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    ledger = _unwrap(state.orchestrator.add_product(
        session_id,
        request.product_id,
        request.quantity,
        unit_price=request.unit_price,
        individual_name=request.individual_name,
    ))
    return ledger.to_dict()


@app.patch("/sessions/{session_id}/items/{item_id}", tags=["Sessions"])
async def update_product_item(
    session_id: str,
    item_id: str,
    request: UpdateItemRequest,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    ledger = _unwrap(state.orchestrator.update_product_item(
        session_id,
        item_id,
        quantity=request.quantity,
        unit_price=request.unit_price,
        individual_name=request.individual_name,
    ))
    return ledger.to_dict()


@app.delete("/sessions/{session_id}/items/{item_id}", tags=["Sessions"])
async def remove_product_item(
    session_id: str,
    item_id: str,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    return _unwrap(state.orchestrator.remove_product_item(session_id, item_id)).to_dict()


@app.post("/sessions/{session_id}/partial-exit", tags=["Sessions"])
async def partial_exit(
    session_id: str,
    request: PartialExitRequest,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    """
    Bill the selected individuals and release them.

    Time is priced for the leaving headcount alone. Selecting everyone
    still in the session is rejected; complete the session instead.
    """
    receipt = _unwrap(state.orchestrator.partial_exit(
        session_id,
        request.individual_ids,
        request.item_quantities,
    ))
    return {
        "invoice": receipt.invoice.to_dict(),
        "session": receipt.ledger.to_dict(),
        "exiting_names": receipt.exiting_names,
    }


@app.post("/sessions/{session_id}/complete", tags=["Sessions"])
async def complete_session(
    session_id: str,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    receipt = _unwrap(state.orchestrator.complete_session(session_id))
    return {
        "invoice": receipt.invoice.to_dict(),
        "session": receipt.ledger.to_dict(),
    }


@app.get("/sessions/{session_id}/invoices", tags=["Sessions"])
async def list_session_invoices(
    session_id: str,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    invoices = state.orchestrator.list_session_invoices(session_id)
    return {
        "total": len(invoices),
        "invoices": [i.to_dict() for i in invoices],
    }


# ============================================================================
# Invoices
# ============================================================================

@app.get("/invoices/{invoice_id}", tags=["Invoices"])
async def get_invoice(
    invoice_id: str,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    return _unwrap(state.orchestrator.get_invoice(invoice_id)).to_dict()


@app.post("/invoices/{invoice_id}/payments", tags=["Invoices"])
async def apply_payment(
    invoice_id: str,
    request: PaymentRequest,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    """Record a payment. Overpayment is accepted and shows as a negative balance."""
    try:
        method = PaymentMethod[request.method.upper()]
    except KeyError:
        raise OutcomeError(ErrorKind.INVALID_ARGUMENT.value, f"Invalid payment method: {request.method}")

    invoice = _unwrap(state.orchestrator.apply_payment(
        invoice_id,
        method,
        request.amount,
        transaction_ref=request.transaction_ref,
    ))
    return invoice.to_dict()


# ============================================================================
# Catalog and clients
# ============================================================================

@app.get("/products", tags=["Catalog"])
async def list_products(
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    products = state.products.list_active()
    return {
        "total": len(products),
        "products": [p.to_dict() for p in products],
    }


@app.post("/products", status_code=201, tags=["Catalog"])
async def create_product(
    request: CreateProductRequest,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    product = state.products.create(ProductRecord(
        id=new_id("PRD"),
        name=request.name,
        price=request.price,
        stock_quantity=request.stock_quantity,
        min_stock_level=request.min_stock_level,
        category=request.category,
        unit=request.unit,
    ))
    return product.to_dict()


@app.get("/products/low-stock", tags=["Catalog"])
async def low_stock_products(
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    """Active products at or below their minimum stock level."""
    products = state.products.list_low_stock()
    return {
        "total": len(products),
        "products": [p.to_dict() for p in products],
    }


@app.post("/products/{product_id}/restock", tags=["Catalog"])
async def restock_product(
    product_id: str,
    request: RestockRequest,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    return state.products.restock(product_id, request.quantity).to_dict()


@app.post("/clients", status_code=201, tags=["Clients"])
async def create_client(
    request: CreateClientRequest,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    """Register a walk-in client with a one-day membership."""
    return state.clients.create_walk_in(request.name, request.phone).to_dict()


@app.get("/clients", tags=["Clients"])
async def search_clients(
    q: str = "",
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    clients = state.clients.search(q)
    return {
        "total": len(clients),
        "clients": [c.to_dict() for c in clients],
    }


# ============================================================================
# Run
# ============================================================================

def run(host: str = "0.0.0.0", port: Optional[int] = None, reload: bool = False):
    """Run the server."""
    import uvicorn
    uvicorn.run(
        "shaghaf.api.server:app",
        host=host,
        port=port or int(os.environ.get("PORT", 8000)),
        reload=reload or os.environ.get("DEBUG", "false").lower() == "true",
    )


if __name__ == "__main__":
    run()
