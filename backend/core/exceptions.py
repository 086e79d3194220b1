"""
Domain errors raised by the stock ledger and the sale transaction processor.

Every error carries a machine readable ``code``, the HTTP ``status_code`` the
API layer answers with, and a ``details`` dict that is merged into the error
response body.
"""
from rest_framework import status


class SalesError(Exception):
    code = 'sales_error'
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = 'Sale could not be processed'

    def __init__(self, message=None, **details):
        self.message = message or self.default_message
        self.details = details
        # Checkout state the error was raised in, set by the processor
        self.state = None
        super().__init__(self.message)

    def to_dict(self):
        data = {'error': self.code, 'message': self.message}
        data.update(self.details)
        if self.state:
            data['state'] = self.state
        return data


class CheckoutValidationError(SalesError):
    """Raised before any write; the cart can be corrected and resubmitted."""
    code = 'invalid_cart'


class EmptyCart(CheckoutValidationError):
    code = 'empty_cart'
    default_message = 'Cart is empty'


class InvalidQuantity(CheckoutValidationError):
    code = 'invalid_quantity'
    default_message = 'Quantity must be a positive whole number'


class InvalidPrice(CheckoutValidationError):
    code = 'invalid_price'
    default_message = 'Price must be a non-negative amount'


class TotalOutOfRange(CheckoutValidationError):
    code = 'total_out_of_range'
    default_message = 'Sale total exceeds the largest amount that can be recorded'


class InvalidPaymentMode(CheckoutValidationError):
    code = 'invalid_payment_mode'
    default_message = 'Unsupported payment mode'


class ProductNotFound(SalesError):
    code = 'product_not_found'
    status_code = status.HTTP_404_NOT_FOUND
    default_message = 'Product not found'

    def __init__(self, product_id, message=None):
        super().__init__(message or f'Product {product_id} not found', product_id=str(product_id))


class InsufficientStock(SalesError):
    code = 'insufficient_stock'
    default_message = 'Insufficient stock'

    def __init__(self, product, requested, available=None, message=None):
        available = product.quantity if available is None else available
        super().__init__(
            message or f'Insufficient stock for {product.name}: requested {requested}, available {available}',
            product_id=str(product.pk),
            product_name=product.name,
            requested=requested,
            available=available,
        )


class PersistenceError(SalesError):
    code = 'persistence_error'
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = 'Sale could not be saved'
