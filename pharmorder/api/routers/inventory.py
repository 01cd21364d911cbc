# pharmorder/api/routers/inventory.py
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from pharmorder.data.database import get_db
from pharmorder.domain.schemas import MovementOut, RestockIn, StockAdjustIn, StockLevelsOut
from pharmorder.services.inventory_service import InventoryService

router = APIRouter(prefix="/inventory", tags=["inventory"])


@router.get("/{product_id}", response_model=StockLevelsOut)
def get_stock_levels(product_id: int, db: Session = Depends(get_db)):
    svc = InventoryService(db)
    try:
        return svc.get_stock_levels(product_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/{product_id}/movements", response_model=List[MovementOut])
def get_movements(
    product_id: int,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    svc = InventoryService(db)
    return svc.get_movements(product_id, limit)


@router.post("/{product_id}/restock", response_model=StockLevelsOut)
def restock(product_id: int, payload: RestockIn, db: Session = Depends(get_db)):
    svc = InventoryService(db)
    try:
        svc.increase_stock(
            product_id,
            payload.quantity,
            reference_number=payload.reference_number,
            reason=payload.reason,
            created_by=payload.created_by,
        )
        db.commit()
    except LookupError as e:
        db.rollback()
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))
    return svc.get_stock_levels(product_id)


@router.post("/{product_id}/adjust", response_model=StockLevelsOut)
def adjust(product_id: int, payload: StockAdjustIn, db: Session = Depends(get_db)):
    svc = InventoryService(db)
    try:
        svc.adjust_stock(product_id, payload.new_quantity, payload.reason, created_by=payload.created_by)
        db.commit()
    except LookupError as e:
        db.rollback()
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))
    return svc.get_stock_levels(product_id)
