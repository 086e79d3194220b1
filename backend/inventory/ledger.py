"""
Stock ledger: the authoritative quantity on hand of every product.

Quantities only go down through ``StockLedger.decrement_stock``, which is a
single conditional UPDATE guarded by ``quantity >= amount``. Two concurrent
decrements of the last unit can therefore never both succeed, and the stored
quantity never becomes negative. Restocking is a catalog edit and has no
ledger operation.
"""
import logging
import uuid

from django.db.models import F
from django.utils import timezone

from backend.catalog.models import Product
from backend.core.exceptions import InsufficientStock, InvalidQuantity, ProductNotFound

logger = logging.getLogger(__name__)


def normalize_product_id(product_id):
    """Return the product id as a UUID, or None when it cannot be one."""
    if isinstance(product_id, uuid.UUID):
        return product_id
    try:
        return uuid.UUID(str(product_id))
    except (TypeError, ValueError, AttributeError):
        return None


class StockLedger:

    def get_product(self, product_id):
        """Look up a product; malformed ids are treated as not found."""
        pk = normalize_product_id(product_id)
        if pk is None:
            return None
        return Product.objects.filter(pk=pk).first()

    def get_products(self, product_ids):
        """Bulk lookup keyed by the string form of each found product id."""
        pks = {pk for pk in (normalize_product_id(pid) for pid in product_ids) if pk is not None}
        return {str(product.pk): product for product in Product.objects.filter(pk__in=pks)}

    def decrement_stock(self, product_id, amount):
        """Atomically reduce a product's quantity and return the updated product.

        Raises InvalidQuantity for a non-positive amount, ProductNotFound when
        the product does not exist and InsufficientStock when the quantity on
        hand is lower than ``amount``.
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidQuantity(f'Cannot decrement stock by {amount!r}', quantity=str(amount))

        pk = normalize_product_id(product_id)
        if pk is None:
            raise ProductNotFound(product_id)

        updated = Product.objects.filter(pk=pk, quantity__gte=amount).update(
            quantity=F('quantity') - amount,
            updated_at=timezone.now(),
        )
        product = Product.objects.filter(pk=pk).first()
        if product is None:
            raise ProductNotFound(product_id)
        if not updated:
            logger.warning(
                f"Stock decrement refused: product={product.sku} requested={amount} available={product.quantity}"
            )
            raise InsufficientStock(product, requested=amount)

        logger.debug(f"Stock decremented: product={product.sku} by={amount} remaining={product.quantity}")
        return product

    def low_stock_products(self):
        """Products at or below their low-stock threshold, lowest quantity first."""
        return Product.objects.filter(quantity__lte=F('low_stock_threshold')).order_by('quantity', 'name')


stock_ledger = StockLedger()
