# pharmorder/services/payhere_service.py
import hashlib
import hmac
from typing import Any, Dict

from pharmorder.utils.logging import get_logger
from pharmorder.utils.money import money
from pharmorder.utils import settings

logger = get_logger(__name__)

SUCCESS = "2"
PENDING = "0"
CANCELLED = "-1"
FAILED = "-2"
CHARGEDBACK = "-3"


def _md5_upper(value: str) -> str:
    return hashlib.md5(value.encode("utf-8")).hexdigest().upper()


def format_amount(amount) -> str:
    # PayHere liczy hash z kwoty z dokładnie dwoma miejscami, bez separatora tysięcy
    return f"{money(amount):.2f}"


class PayHereService:
    """Hash checkoutu i weryfikacja podpisu notyfikacji (md5sig) PayHere."""

    def __init__(
        self,
        merchant_id: str | None = None,
        secret: str | None = None,
        currency: str | None = None,
        sandbox: bool | None = None,
    ):
        self.merchant_id = settings.PAYHERE_MERCHANT_ID if merchant_id is None else merchant_id
        self.secret = settings.PAYHERE_SECRET if secret is None else secret
        self.currency = settings.PAYHERE_CURRENCY if currency is None else currency
        self.sandbox = settings.PAYHERE_SANDBOX if sandbox is None else sandbox

    def generate_hash(self, order_number: str, amount, currency: str | None = None) -> str:
        currency = currency or self.currency
        return _md5_upper(
            f"{self.merchant_id}{order_number}{format_amount(amount)}{currency}{_md5_upper(self.secret)}"
        )

    def verify_ipn_hash(
        self,
        merchant_id: str,
        order_id: str,
        payhere_amount: str,
        payhere_currency: str,
        status_code: str,
        md5sig: str,
    ) -> bool:
        if not md5sig:
            return False

        local = _md5_upper(
            f"{merchant_id}{order_id}{payhere_amount}{payhere_currency}{status_code}{_md5_upper(self.secret)}"
        )
        return hmac.compare_digest(local, md5sig.strip().upper())

    def prepare_checkout_data(self, order, user) -> Dict[str, Any]:
        address = order.shipping_address or order.billing_address or {}
        first_name = (user.first_name if user else None) or "Customer"
        last_name = (user.last_name if user else None) or "Customer"

        return {
            "sandbox": self.sandbox,
            "merchant_id": self.merchant_id,
            "return_url": settings.PAYHERE_RETURN_URL,
            "cancel_url": settings.PAYHERE_CANCEL_URL,
            "notify_url": settings.PAYHERE_NOTIFY_URL,
            "order_id": order.order_number,
            "items": f"Order {order.order_number}",
            "currency": self.currency,
            "amount": format_amount(order.due_amount if order.due_amount is not None else order.total),
            "hash": self.generate_hash(
                order.order_number,
                order.due_amount if order.due_amount is not None else order.total,
            ),
            "first_name": first_name,
            "last_name": last_name,
            "email": (user.email if user else None) or "customer@example.com",
            "phone": (user.phone if user else None) or address.get("contact_phone") or "0000000000",
            "address": address.get("address_line1") or "N/A",
            "city": address.get("city") or "N/A",
            "country": address.get("country") or "Sri Lanka",
        }
