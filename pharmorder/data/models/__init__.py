#import wszystkich modeli żeby SQLAlchemy je zarejestrował w base metadata

from pharmorder.data.models.user import UserModel
from pharmorder.data.models.doctor import DoctorModel
from pharmorder.data.models.address import AddressModel
from pharmorder.data.models.product import ProductModel
from pharmorder.data.models.inventory_movement import InventoryMovementModel
from pharmorder.data.models.discount import DiscountModel
from pharmorder.data.models.cart import CartModel
from pharmorder.data.models.cart_item import CartItemModel
from pharmorder.data.models.order import OrderModel
from pharmorder.data.models.order_item import OrderItemModel
from pharmorder.data.models.order_status_history import OrderStatusHistoryModel
from pharmorder.data.models.payment import PaymentModel
from pharmorder.data.models.order_sequence import OrderSequenceModel
from pharmorder.data.models.system_setting import SystemSettingModel
from pharmorder.data.models.audit_log import AuditLogModel

__all__ = [
    "UserModel",
    "DoctorModel",
    "AddressModel",
    "ProductModel",
    "InventoryMovementModel",
    "DiscountModel",
    "CartModel",
    "CartItemModel",
    "OrderModel",
    "OrderItemModel",
    "OrderStatusHistoryModel",
    "PaymentModel",
    "OrderSequenceModel",
    "SystemSettingModel",
    "AuditLogModel",
]
