# pharmorder/domain/errors.py
"""
Wyjątki domenowe.

Dziedziczą po wbudowanych (ValueError / LookupError / RuntimeError), więc
routery mapują je na kody HTTP tak jak reszta serwisu:
ValueError -> 400, LookupError -> 404, RuntimeError -> 409.
"""


class PharmOrderError(Exception):
    pass


class BusinessRuleError(PharmOrderError, ValueError):
    pass


class EmptyCart(BusinessRuleError):
    def __init__(self, message: str = "Cart is empty"):
        super().__init__(message)


class MissingAddress(BusinessRuleError):
    pass


class InsufficientStock(BusinessRuleError):
    def __init__(self, product_name: str, message: str):
        self.product_name = product_name
        super().__init__(f"{product_name}: {message}")


class InvalidTransition(BusinessRuleError):
    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot transition from {current} to {target}")


class PaymentExceedsDue(BusinessRuleError):
    pass


class RefundNotAllowed(BusinessRuleError):
    pass


class InvalidDiscount(BusinessRuleError):
    pass


class InventoryStateError(BusinessRuleError):
    pass


class NotFoundError(PharmOrderError, LookupError):
    pass


class InvalidSignature(PharmOrderError):
    pass


class ConcurrencyConflict(PharmOrderError, RuntimeError):
    pass
