# pharmorder/api/routers/payments.py
from typing import List

from fastapi import APIRouter, Depends, Form, HTTPException, Query
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from pharmorder.api.deps import get_auditor, get_notifier
from pharmorder.data.database import get_db
from pharmorder.domain.errors import InvalidSignature
from pharmorder.domain.schemas import PaymentIn, PaymentOut, PaymentRecordedOut, PaymentVerifyOut, RefundIn
from pharmorder.services.payment_service import PaymentService

router = APIRouter(prefix="/payments", tags=["payments"])


def get_service(db: Session, notifier=None, auditor=None):
    return PaymentService(db, notifier=notifier, auditor=auditor)


@router.post("/payhere-notify", response_class=PlainTextResponse)
def payhere_notify(
    merchant_id: str = Form(""),
    order_id: str = Form(""),
    payment_id: str = Form(""),
    payhere_amount: str = Form(""),
    payhere_currency: str = Form(""),
    status_code: str = Form(""),
    md5sig: str = Form(""),
    method: str = Form(""),
    db: Session = Depends(get_db),
    notifier=Depends(get_notifier),
    auditor=Depends(get_auditor),
):
    """
    Notyfikacja serwer-serwer z PayHere (form-urlencoded).
    Po weryfikacji zawsze 200, żeby bramka nie ponawiała w kółko.
    """
    svc = get_service(db, notifier, auditor)
    payload = {
        "merchant_id": merchant_id,
        "order_id": order_id,
        "payment_id": payment_id,
        "payhere_amount": payhere_amount,
        "payhere_currency": payhere_currency,
        "status_code": status_code,
        "md5sig": md5sig,
        "method": method,
    }
    try:
        outcome = svc.handle_gateway_notify(payload)
    except InvalidSignature:
        return PlainTextResponse("Invalid Hash", status_code=400)
    except LookupError:
        return PlainTextResponse("Order not found", status_code=404)

    return PlainTextResponse(outcome.body, status_code=200)


@router.get("/order/{order_id}", response_model=List[PaymentOut])
def list_payments(order_id: int, db: Session = Depends(get_db)):
    svc = get_service(db)
    try:
        return svc.list_payments(order_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/order/{order_id}", response_model=PaymentRecordedOut, status_code=201)
def add_payment(
    order_id: int,
    payload: PaymentIn,
    user_id: int = Query(...),
    db: Session = Depends(get_db),
    notifier=Depends(get_notifier),
    auditor=Depends(get_auditor),
):
    svc = get_service(db, notifier, auditor)
    try:
        payment, order = svc.add_payment(
            order_id,
            payload.amount,
            payload.method,
            transaction_id=payload.transaction_id,
            notes=payload.notes,
            actor_id=user_id,
        )
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except RuntimeError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "payment": payment,
        "paid_amount": order.paid_amount,
        "due_amount": order.due_amount,
        "payment_status": order.payment_status,
    }


@router.get("/verify/{order_number}", response_model=PaymentVerifyOut)
def verify_payment(
    order_number: str,
    user_id: int = Query(...),
    db: Session = Depends(get_db),
):
    """Status płatności dla strony powrotu z bramki."""
    svc = get_service(db)
    try:
        return svc.verify_order_payment(order_number, user_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/{payment_id}/refund", response_model=PaymentOut)
def refund_payment(
    payment_id: int,
    payload: RefundIn,
    user_id: int = Query(...),
    db: Session = Depends(get_db),
    notifier=Depends(get_notifier),
    auditor=Depends(get_auditor),
):
    svc = get_service(db, notifier, auditor)
    try:
        return svc.process_refund(payment_id, payload.amount, payload.reason, actor_id=user_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except RuntimeError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
