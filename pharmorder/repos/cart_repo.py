# pharmorder/repos/cart_repo.py
from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload

from pharmorder.data.models.cart import CartModel
from pharmorder.data.models.cart_item import CartItemModel


class CartRepo:
    def __init__(self, db: Session):
        self.db = db

    def get_active_cart_by_user(self, user_id: int, lock: bool = False) -> CartModel | None:
        stmt = (
            select(CartModel)
            .where(CartModel.user_id == user_id, CartModel.status == "active")
            .options(selectinload(CartModel.items))
        )
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self.db.execute(stmt).scalar_one_or_none()

    def create_cart(self, cart: CartModel) -> CartModel:
        self.db.add(cart)
        self.db.flush()
        return cart

    def get_cart_item(self, cart_id: int, product_id: int) -> CartItemModel | None:
        return self.db.execute(
            select(CartItemModel).where(
                CartItemModel.cart_id == cart_id,
                CartItemModel.product_id == product_id,
            )
        ).scalar_one_or_none()

    def add_cart_item(self, cart: CartModel, item: CartItemModel) -> None:
        cart.items.append(item)

    def delete_cart_item(self, cart: CartModel, item: CartItemModel) -> None:
        # delete-orphan usuwa wiersz przy flush
        cart.items.remove(item)

    def update_cart_version(self, cart_id: int, old_version: int, new_data: dict) -> int:
        # UPDATE carts SET ... WHERE id = :id AND version = :old_version
        result = self.db.execute(
            update(CartModel)
            .where(CartModel.id == cart_id, CartModel.version == old_version)
            .values(**new_data)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()
