# pharmorder/api/routers/orders.py
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from pharmorder.api.deps import get_auditor, get_ip_address, get_notifier, get_settings_cache
from pharmorder.data.database import get_db
from pharmorder.domain.schemas import (
    OrderCancelIn,
    OrderCreate,
    OrderCreatedOut,
    OrderDetailOut,
    OrderListOut,
    OrderOut,
    OrderStatusUpdate,
)
from pharmorder.services.order_service import OrderService
from pharmorder.services.order_status_service import OrderStatusService

router = APIRouter(prefix="/orders", tags=["orders"])


def get_service(db: Session, notifier=None, auditor=None, settings_cache=None):
    return OrderService(db, notifier=notifier, auditor=auditor, settings_cache=settings_cache)


def get_status_service(db: Session, notifier=None, auditor=None):
    return OrderStatusService(db, notifier=notifier, auditor=auditor)


@router.post("/", response_model=OrderCreatedOut, status_code=201)
def create_order(
    payload: OrderCreate,
    request: Request,
    user_id: int = Query(...),
    db: Session = Depends(get_db),
    notifier=Depends(get_notifier),
    auditor=Depends(get_auditor),
    settings_cache=Depends(get_settings_cache),
):
    """
    Tworzy zamówienie z aktywnego koszyka użytkownika.
    Dla payment_method=payhere zwraca też dane do checkoutu.
    """
    svc = get_service(db, notifier, auditor, settings_cache)
    try:
        result = svc.create_order(
            user_id=user_id,
            payment_method=payload.payment_method,
            shipping_address_id=payload.shipping_address_id,
            billing_address_id=payload.billing_address_id,
            use_credit=payload.use_credit,
            customer_notes=payload.customer_notes,
            ip_address=get_ip_address(request),
        )
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except RuntimeError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {"order": result.order, "payhere_data": result.checkout}


@router.get("/", response_model=OrderListOut)
def list_orders(
    user_id: int = Query(...),
    status: str | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    return svc.list_orders(user_id, status, page, limit)


@router.get("/{order_ref}", response_model=OrderDetailOut)
def get_order(
    order_ref: str,
    user_id: int = Query(...),
    is_admin: bool = Query(False),
    db: Session = Depends(get_db),
):
    """
    Pobiera zamówienie po ID albo numerze (ORD...).
    """
    svc = get_service(db)
    try:
        return svc.get_order(order_ref, user_id, is_admin)
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/{order_id}/payment-data")
def get_payment_data(
    order_id: int,
    user_id: int = Query(...),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    try:
        return svc.get_payment_data(order_id, user_id)
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.patch("/{order_id}/status", response_model=OrderOut)
def update_status(
    order_id: int,
    payload: OrderStatusUpdate,
    request: Request,
    user_id: int = Query(...),
    db: Session = Depends(get_db),
    notifier=Depends(get_notifier),
    auditor=Depends(get_auditor),
):
    svc = get_status_service(db, notifier, auditor)
    try:
        return svc.update_status(
            order_id,
            payload.status.value,
            actor_id=user_id,
            notes=payload.notes,
            tracking_number=payload.tracking_number,
            tracking_url=payload.tracking_url,
            expected_delivery_date=payload.expected_delivery_date,
            ip_address=get_ip_address(request),
        )
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except RuntimeError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/{order_id}/cancel", response_model=OrderOut)
def cancel_order(
    order_id: int,
    request: Request,
    payload: OrderCancelIn | None = None,
    user_id: int = Query(...),
    db: Session = Depends(get_db),
    notifier=Depends(get_notifier),
    auditor=Depends(get_auditor),
):
    svc = get_status_service(db, notifier, auditor)
    try:
        return svc.cancel(
            order_id,
            actor_id=user_id,
            reason=payload.reason if payload else None,
            ip_address=get_ip_address(request),
        )
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except RuntimeError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
