# pharmorder/api/routers/carts.py
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from pharmorder.api.deps import get_settings_cache
from pharmorder.data.database import get_db
from pharmorder.domain.schemas import CartAddressesIn, CartOut, CouponIn, ItemIn, ItemQuantityIn
from pharmorder.services.cart_service import CartService

router = APIRouter(prefix="/carts", tags=["carts"])


def get_service(db: Session, settings_cache=None):
    return CartService(db, settings_cache=settings_cache)


@router.post("/", response_model=CartOut)
def create_cart(
    user_id: int = Query(...),
    db: Session = Depends(get_db),
    settings_cache=Depends(get_settings_cache),
):
    svc = get_service(db, settings_cache)
    return svc.create_cart(user_id)


@router.get("/active", response_model=CartOut)
def get_active_cart(
    user_id: int = Query(...),
    db: Session = Depends(get_db),
    settings_cache=Depends(get_settings_cache),
):
    svc = get_service(db, settings_cache)
    cart = svc.get_active_cart(user_id)
    if not cart:
        raise HTTPException(status_code=404, detail="Active cart not found")
    return cart


@router.post("/items", response_model=CartOut)
def add_item(
    payload: ItemIn,
    user_id: int = Query(...),
    db: Session = Depends(get_db),
    settings_cache=Depends(get_settings_cache),
):
    svc = get_service(db, settings_cache)
    try:
        return svc.add_product(user_id, payload.product_id, payload.quantity)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except RuntimeError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.put("/items/{product_id}", response_model=CartOut)
def update_item(
    product_id: int,
    payload: ItemQuantityIn,
    user_id: int = Query(...),
    db: Session = Depends(get_db),
    settings_cache=Depends(get_settings_cache),
):
    svc = get_service(db, settings_cache)
    try:
        return svc.update_item_quantity(user_id, product_id, payload.quantity)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except RuntimeError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/items", response_model=CartOut)
def clear_items(
    user_id: int = Query(...),
    db: Session = Depends(get_db),
    settings_cache=Depends(get_settings_cache),
):
    svc = get_service(db, settings_cache)
    try:
        return svc.clear_cart(user_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except RuntimeError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.delete("/items/{product_id}", response_model=CartOut)
def remove_item(
    product_id: int,
    user_id: int = Query(...),
    db: Session = Depends(get_db),
    settings_cache=Depends(get_settings_cache),
):
    svc = get_service(db, settings_cache)
    try:
        return svc.remove_product(user_id, product_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except RuntimeError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.put("/addresses", response_model=CartOut)
def set_addresses(
    payload: CartAddressesIn,
    user_id: int = Query(...),
    db: Session = Depends(get_db),
    settings_cache=Depends(get_settings_cache),
):
    svc = get_service(db, settings_cache)
    try:
        return svc.set_addresses(user_id, payload.shipping_address_id, payload.billing_address_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except RuntimeError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/coupon", response_model=CartOut)
def apply_coupon(
    payload: CouponIn,
    user_id: int = Query(...),
    db: Session = Depends(get_db),
    settings_cache=Depends(get_settings_cache),
):
    svc = get_service(db, settings_cache)
    try:
        return svc.apply_coupon(user_id, payload.code)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except RuntimeError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/coupon", response_model=CartOut)
def remove_coupon(
    user_id: int = Query(...),
    db: Session = Depends(get_db),
    settings_cache=Depends(get_settings_cache),
):
    svc = get_service(db, settings_cache)
    try:
        return svc.remove_coupon(user_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except RuntimeError as e:
        raise HTTPException(status_code=409, detail=str(e))
