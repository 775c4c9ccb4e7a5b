"""
FastAPI surface for the dispatch core.

A thin layer: every endpoint calls one dispatch operation and maps the core's
errors to HTTP status codes (OrderNotFound -> 404, InvalidTransition -> 409).

Run with:
    uvicorn api.main:app --reload

Then visit http://localhost:8000/docs for interactive API documentation.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel, Field

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(name)-24s | %(levelname)-5s | %(message)s",
    datefmt="%H:%M:%S",
)

from dispatch.runtime import DispatchRuntime
from domain.errors import InvalidTransition, OrderNotFound
from domain.models import (
    AssignmentRequest,
    BulkNotificationRequest,
    BulkNotificationResult,
    Location,
    NotificationRecord,
    Order,
    OrderStatusHistoryEntry,
)

logger = logging.getLogger("dispatch_api")


# Request/response models
class TransitionRequest(BaseModel):
    """Body of a status change request."""
    status: str = Field(..., description="Requested order status, e.g. 'confirmed'")
    actor_id: str = Field(..., description="Who is asking (vendor, rider, admin or system id)")
    notes: Optional[str] = None


class RiderAction(BaseModel):
    rider_id: str


class OfferResponse(BaseModel):
    """Result of a rider's accept or reject."""
    order_id: str
    rider_id: str
    applied: bool
    detail: str


class LocationResponse(BaseModel):
    rider_id: str
    orders_updated: int


# Module-level runtime (would use proper DI in production)
_runtime: Optional[DispatchRuntime] = None


def get_runtime() -> DispatchRuntime:
    """Get the running dispatch core, starting it on first use."""
    global _runtime
    if _runtime is None:
        _runtime = DispatchRuntime().start()
    return _runtime


def reset_runtime(runtime: Optional[DispatchRuntime] = None) -> None:
    """Replace the dispatch core (for testing). The old one is shut down."""
    global _runtime
    if _runtime is not None and _runtime is not runtime:
        _runtime.shutdown()
    _runtime = runtime


# Application lifespan
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    logger.info("Starting Order Dispatch API")
    get_runtime()
    yield
    logger.info("Shutting down")
    reset_runtime(None)


app = FastAPI(
    title="Order Dispatch API",
    description="""
    Order lifecycle, rider assignment and notification routing for food delivery.

    ## Endpoints

    - `/orders/*` - Request status transitions and read the audit trail
    - `/assignments/*` - Inspect rider matching, accept or reject offers
    - `/riders/*` - Report rider locations
    - `/notifications/*` - Platform announcements and the delivery log
    """,
    version="1.0.0",
    lifespan=lifespan,
)


# =============================================================================
# Health Check
# =============================================================================

@app.get("/health", tags=["Health"])
def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "order-dispatch"}


# =============================================================================
# Orders
# =============================================================================

@app.get("/orders/{order_id}", response_model=Order, tags=["Orders"])
def get_order(order_id: str, runtime: DispatchRuntime = Depends(get_runtime)):
    order = runtime.data_store.get_order(order_id)
    if order is None:
        raise HTTPException(status_code=404, detail=f"Order not found: {order_id}")
    return order


@app.post(
    "/orders/{order_id}/transitions",
    response_model=OrderStatusHistoryEntry,
    tags=["Orders"],
)
def transition_order(
    order_id: str,
    request: TransitionRequest,
    runtime: DispatchRuntime = Depends(get_runtime),
):
    """
    Move an order to a new status.

    Fails with 409 when the transition graph has no such edge; the order is
    left unchanged.
    """
    try:
        return runtime.state_machine.transition(
            order_id,
            request.status,
            actor_id=request.actor_id,
            notes=request.notes,
        )
    except OrderNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidTransition as e:
        raise HTTPException(
            status_code=409,
            detail={"message": str(e), "from": e.from_status, "to": e.to_status},
        )


@app.get(
    "/orders/{order_id}/history",
    response_model=list[OrderStatusHistoryEntry],
    tags=["Orders"],
)
def get_order_history(order_id: str, runtime: DispatchRuntime = Depends(get_runtime)):
    try:
        return runtime.state_machine.get_history(order_id)
    except OrderNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


# =============================================================================
# Rider assignment
# =============================================================================

@app.get("/assignments/{order_id}", response_model=AssignmentRequest, tags=["Assignments"])
def get_assignment(order_id: str, runtime: DispatchRuntime = Depends(get_runtime)):
    """Current matching state for an order (operations dashboard)."""
    request = runtime.assignment_queue.get_assignment_status(order_id)
    if request is None:
        raise HTTPException(status_code=404, detail=f"No assignment for order {order_id}")
    return request


@app.post("/assignments/{order_id}/accept", response_model=OfferResponse, tags=["Assignments"])
def accept_offer(
    order_id: str,
    action: RiderAction,
    runtime: DispatchRuntime = Depends(get_runtime),
):
    applied = runtime.assignment_queue.accept_offer(order_id, action.rider_id)
    return OfferResponse(
        order_id=order_id,
        rider_id=action.rider_id,
        applied=applied,
        detail="Order assigned" if applied else "Offer no longer available",
    )


@app.post("/assignments/{order_id}/reject", response_model=OfferResponse, tags=["Assignments"])
def reject_offer(
    order_id: str,
    action: RiderAction,
    runtime: DispatchRuntime = Depends(get_runtime),
):
    applied = runtime.assignment_queue.reject_offer(order_id, action.rider_id)
    return OfferResponse(
        order_id=order_id,
        rider_id=action.rider_id,
        applied=applied,
        detail="Offer declined" if applied else "Offer no longer available",
    )


@app.post("/assignments/{order_id}/retry", response_model=AssignmentRequest, tags=["Assignments"])
def retry_assignment(order_id: str, runtime: DispatchRuntime = Depends(get_runtime)):
    """Manual re-dispatch of an order whose rider search was exhausted."""
    try:
        request = runtime.assignment_queue.retry_exhausted(order_id)
    except OrderNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    if request is None:
        raise HTTPException(
            status_code=409,
            detail=f"Order {order_id} has no exhausted assignment to retry",
        )
    return request


@app.get(
    "/riders/{rider_id}/offers",
    response_model=list[AssignmentRequest],
    tags=["Assignments"],
)
def get_rider_offers(rider_id: str, runtime: DispatchRuntime = Depends(get_runtime)):
    """Offers currently waiting on a rider."""
    return runtime.assignment_queue.get_rider_pending_offers(rider_id)


@app.post("/riders/{rider_id}/location", response_model=LocationResponse, tags=["Assignments"])
def update_rider_location(
    rider_id: str,
    location: Location,
    runtime: DispatchRuntime = Depends(get_runtime),
):
    try:
        count = runtime.tracker.update_location(rider_id, location)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Rider not found: {rider_id}")
    return LocationResponse(rider_id=rider_id, orders_updated=count)


# =============================================================================
# Notifications
# =============================================================================

@app.post("/notifications/bulk", response_model=BulkNotificationResult, tags=["Notifications"])
def send_bulk_notification(
    request: BulkNotificationRequest,
    runtime: DispatchRuntime = Depends(get_runtime),
):
    """
    Send an announcement to many users.

    Counts every (user, channel) pair as successful, failed or skipped; one
    user's failure never fails the batch.
    """
    return runtime.notification_service.send_bulk_notification(request)


@app.get("/notifications", response_model=list[NotificationRecord], tags=["Notifications"])
def list_notifications(
    order_id: Optional[str] = None,
    recipient_id: Optional[str] = None,
    runtime: DispatchRuntime = Depends(get_runtime),
):
    """The delivery log, optionally filtered."""
    runtime.notification_service.flush()
    return runtime.data_store.get_notifications(order_id=order_id, recipient_id=recipient_id)
