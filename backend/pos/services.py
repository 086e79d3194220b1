"""
Sale transaction processing: turns a cart into a Sale, its SaleItems and the
matching stock decrements.

A checkout moves through validating, persisting_sale, persisting_items and
applying_stock to completed. A failure in any write step ends it in failed.

Validation reads only. Every line must name an existing product, a positive
whole quantity, a non-negative price in whole currency units (no sub-cent
digits) and a quantity the product has on hand. The total is the sum of price
times quantity and must fit the ``Sale.total`` column. Nothing is written
unless the whole cart passes.

Two checkouts racing for the same stock are settled by the ledger's
conditional UPDATE: the loser fails with InsufficientStock, never a negative
quantity.

With ``POS_ATOMIC_CHECKOUT`` enabled the three write steps share one database
transaction, so a failure in any of them leaves no sale and no stock change.
With it disabled each write commits on its own and a failure after the header
was written leaves a partial sale, which is logged at ERROR level and can be
found later with ``manage.py check_sale_integrity``.
"""
import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional

from django.conf import settings
from django.db import DatabaseError, transaction
from django.utils import timezone

from backend.catalog.models import Product
from backend.core.exceptions import (
    EmptyCart, InsufficientStock, InvalidPaymentMode, InvalidPrice, InvalidQuantity,
    PersistenceError, ProductNotFound, SalesError, TotalOutOfRange,
)
from backend.inventory.ledger import StockLedger, normalize_product_id
from .models import Sale, SaleItem

logger = logging.getLogger(__name__)

MAX_PRICE = Decimal('99999999.99')


class CheckoutState:
    VALIDATING = 'validating'
    PERSISTING_SALE = 'persisting_sale'
    PERSISTING_ITEMS = 'persisting_items'
    APPLYING_STOCK = 'applying_stock'
    COMPLETED = 'completed'
    FAILED = 'failed'


@dataclass(frozen=True)
class CartLine:
    product: Product
    quantity: int
    price: Decimal

    @property
    def line_total(self):
        return self.price * self.quantity


@dataclass(frozen=True)
class ValidatedCart:
    lines: list
    total: Decimal
    payment_mode: str
    customer_name: Optional[str] = None
    client_total: Optional[Decimal] = None


@dataclass
class CheckoutAttempt:
    state: str = CheckoutState.VALIDATING
    sale: Optional[Sale] = None
    history: list = field(default_factory=list)

    def advance(self, state):
        self.history.append(self.state)
        self.state = state


def currency_quantum(places=None):
    if places is None:
        places = settings.SALES_CURRENCY_PLACES
    return Decimal(1).scaleb(-places)


def coerce_quantity(value):
    """Return ``value`` as a positive int or raise InvalidQuantity."""
    if value is None or isinstance(value, bool):
        raise InvalidQuantity(quantity=str(value))
    if isinstance(value, int):
        quantity = value
    else:
        try:
            number = Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise InvalidQuantity(quantity=str(value))
        if not number.is_finite() or number != number.to_integral_value():
            raise InvalidQuantity(quantity=str(value))
        quantity = int(number)
    if quantity <= 0:
        raise InvalidQuantity(quantity=str(value))
    return quantity


def coerce_price(value, places=None):
    """Return ``value`` as a non-negative Decimal at the currency precision.

    Prices with more decimal places than the currency has are refused, not
    rounded.
    """
    if value is None or isinstance(value, bool):
        raise InvalidPrice(price=str(value))
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidPrice(price=str(value))
    if not price.is_finite() or price < 0 or price > MAX_PRICE:
        raise InvalidPrice(price=str(value))
    quantized = price.quantize(currency_quantum(places))
    if quantized != price:
        raise InvalidPrice(
            f'Price {value} has more than {-currency_quantum(places).as_tuple().exponent} decimal places',
            price=str(value),
        )
    return quantized


def max_sale_total():
    """Largest amount the ``Sale.total`` column can hold."""
    field = Sale._meta.get_field('total')
    return Decimal(10) ** (field.max_digits - field.decimal_places) - Decimal(1).scaleb(-field.decimal_places)


def normalize_payment_mode(value):
    """Blank means Cash; matching is case-insensitive."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return Sale.PAYMENT_CASH
    modes = {code.lower(): code for code, _ in Sale.PAYMENT_MODE_CHOICES}
    mode = modes.get(str(value).strip().lower())
    if mode is None:
        raise InvalidPaymentMode(
            f'Unsupported payment mode {value!r}; expected one of {", ".join(modes.values())}',
            payment_mode=str(value),
        )
    return mode


def normalize_customer_name(value):
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def compute_total(lines, places=None):
    total = sum((line.line_total for line in lines), Decimal('0'))
    return total.quantize(currency_quantum(places), rounding=ROUND_HALF_UP)


class SaleTransactionProcessor:
    """Validates a cart and records it as a sale.

    Collaborators are injectable: ``ledger`` (stock access), ``clock`` (sale
    timestamp) and ``id_factory`` (identities of new records). ``atomic``
    defaults to the ``POS_ATOMIC_CHECKOUT`` setting.
    """

    def __init__(self, ledger=None, clock=None, id_factory=None, atomic=None, currency_places=None):
        self.ledger = ledger or StockLedger()
        self.clock = clock or timezone.now
        self.id_factory = id_factory or uuid.uuid4
        self.atomic = settings.POS_ATOMIC_CHECKOUT if atomic is None else atomic
        self.currency_places = settings.SALES_CURRENCY_PLACES if currency_places is None else currency_places

    def validate(self, sale, items):
        """Check a cart against current stock without writing anything."""
        sale = sale or {}
        if not items:
            raise EmptyCart()

        payment_mode = normalize_payment_mode(sale.get('payment_mode'))
        products = self.ledger.get_products([item.get('product_id') for item in items])

        requested = defaultdict(int)
        lines = []
        for item in items:
            product_id = item.get('product_id')
            pk = normalize_product_id(product_id)
            product = products.get(str(pk)) if pk is not None else None
            if product is None:
                raise ProductNotFound(product_id)

            quantity = coerce_quantity(item.get('quantity'))
            price = coerce_price(item.get('price'), self.currency_places)

            requested[product.pk] += quantity
            if requested[product.pk] > product.quantity:
                raise InsufficientStock(product, requested=requested[product.pk])

            lines.append(CartLine(product=product, quantity=quantity, price=price))

        total = compute_total(lines, self.currency_places)
        if total > max_sale_total():
            raise TotalOutOfRange(total=str(total), maximum=str(max_sale_total()))
        client_total = self._advisory_total(sale.get('total'), total)

        return ValidatedCart(
            lines=lines,
            total=total,
            payment_mode=payment_mode,
            customer_name=normalize_customer_name(sale.get('customer_name')),
            client_total=client_total,
        )

    def checkout(self, sale, items, user=None):
        """Validate and record a sale; returns the persisted Sale."""
        attempt = CheckoutAttempt()
        try:
            cart = self.validate(sale, items)
        except SalesError as exc:
            exc.state = CheckoutState.VALIDATING
            logger.warning(f"Checkout rejected during validation: {exc.message}")
            raise

        try:
            if self.atomic:
                with transaction.atomic():
                    sale_obj = self._write(cart, user, attempt)
            else:
                sale_obj = self._write(cart, user, attempt)
        except SalesError as exc:
            self._fail(attempt, exc)
            raise

        attempt.advance(CheckoutState.COMPLETED)
        logger.info(
            f"Checkout completed: sale={sale_obj.pk} total={sale_obj.total} "
            f"lines={len(cart.lines)} payment_mode={sale_obj.payment_mode}"
        )
        return sale_obj

    def _write(self, cart, user, attempt):
        attempt.advance(CheckoutState.PERSISTING_SALE)
        try:
            attempt.sale = self._persist_sale(cart, user)
        except DatabaseError as e:
            raise PersistenceError(f'Could not save sale: {e}') from e

        attempt.advance(CheckoutState.PERSISTING_ITEMS)
        try:
            self._persist_items(attempt.sale, cart)
        except DatabaseError as e:
            raise PersistenceError(f'Could not save sale items: {e}') from e

        attempt.advance(CheckoutState.APPLYING_STOCK)
        try:
            self._apply_stock(cart)
        except DatabaseError as e:
            raise PersistenceError(f'Could not update stock: {e}') from e

        return attempt.sale

    def _persist_sale(self, cart, user):
        return Sale.objects.create(
            id=self.id_factory(),
            total=cart.total,
            customer_name=cart.customer_name,
            payment_mode=cart.payment_mode,
            created_by=user if user is not None and user.is_authenticated else None,
            created_at=self.clock(),
        )

    def _persist_items(self, sale, cart):
        return SaleItem.objects.bulk_create([
            SaleItem(
                id=self.id_factory(),
                sale=sale,
                product=line.product,
                product_name=line.product.name,
                product_sku=line.product.sku,
                quantity=line.quantity,
                price=line.price,
                line_number=number,
                created_at=sale.created_at,
            )
            for number, line in enumerate(cart.lines, start=1)
        ])

    def _apply_stock(self, cart):
        for line in cart.lines:
            self.ledger.decrement_stock(line.product.pk, line.quantity)

    def _fail(self, attempt, exc):
        failed_in = attempt.state
        exc.state = failed_in
        attempt.advance(CheckoutState.FAILED)

        if attempt.sale is None:
            logger.error(f"Checkout failed while {failed_in}; nothing was written: {exc.message}")
        elif self.atomic:
            logger.error(
                f"Checkout failed while {failed_in}; sale {attempt.sale.pk} and its stock changes "
                f"were rolled back: {exc.message}"
            )
        else:
            exc.details['sale_id'] = str(attempt.sale.pk)
            exc.details['partial'] = True
            logger.error(
                f"Checkout left partial sale {attempt.sale.pk} after failing while {failed_in}: "
                f"{exc.message}. Manual reconciliation required (manage.py check_sale_integrity)."
            )

    def _advisory_total(self, value, total):
        """The client total is informational; disagreements are only logged."""
        if value in (None, ''):
            return None
        try:
            client_total = Decimal(str(value))
        except (InvalidOperation, ValueError):
            logger.warning(f"Ignoring unparseable client total {value!r}")
            return None
        if not client_total.is_finite():
            logger.warning(f"Ignoring unparseable client total {value!r}")
            return None
        if abs(client_total - total) >= currency_quantum(self.currency_places):
            logger.warning(f"Client total {client_total} differs from computed total {total}; using computed total")
        return client_total


def process_checkout(sale, items, user=None):
    """Run a checkout with the default collaborators."""
    return SaleTransactionProcessor().checkout(sale, items, user=user)
