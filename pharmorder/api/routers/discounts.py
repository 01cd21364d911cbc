# pharmorder/api/routers/discounts.py
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from pharmorder.api.deps import get_settings_cache
from pharmorder.data.database import get_db
from pharmorder.domain.schemas import DiscountValidateIn, DiscountValidateOut
from pharmorder.services.pricing_service import PricingService

router = APIRouter(prefix="/discounts", tags=["discounts"])


@router.post("/validate", response_model=DiscountValidateOut)
def validate_discount(
    payload: DiscountValidateIn,
    db: Session = Depends(get_db),
    settings_cache=Depends(get_settings_cache),
):
    """Sprawdza kod rabatowy względem koszyka - nic nie zapisuje."""
    svc = PricingService(db, settings_cache=settings_cache)
    lines = svc.discount_lines((i.product_id, i.subtotal) for i in payload.items)
    result = svc.validate_code(payload.code, payload.cart_total, lines, payload.shipping_amount)

    return {
        "valid": result.valid,
        "discount_amount": result.discount_amount,
        "reason": result.reason,
        "code": result.discount.code if result.discount else None,
        "type": result.discount.type if result.discount else None,
    }
