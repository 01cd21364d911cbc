# tests/helpers.py
import hashlib
from datetime import datetime, timezone

FIXED_NOW = datetime(2024, 5, 17, 10, 30, tzinfo=timezone.utc)

MERCHANT_ID = "1211149"
MERCHANT_SECRET = "test-merchant-secret"


def fixed_clock():
    return FIXED_NOW


def md5_upper(value: str) -> str:
    return hashlib.md5(value.encode("utf-8")).hexdigest().upper()


def payhere_notification(order_number, amount, status_code="2", payment_id="320025071234", secret=MERCHANT_SECRET):
    """Formularz notyfikacji PayHere z poprawnym md5sig."""
    data = {
        "merchant_id": MERCHANT_ID,
        "order_id": order_number,
        "payment_id": payment_id,
        "payhere_amount": amount,
        "payhere_currency": "LKR",
        "status_code": status_code,
        "method": "VISA",
    }
    data["md5sig"] = md5_upper(
        f"{MERCHANT_ID}{order_number}{amount}LKR{status_code}{md5_upper(secret)}"
    )
    return data
