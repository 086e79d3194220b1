"""
Test suite for POS module
Tests: checkout validation, totals, stock decrements, failure handling, sale endpoints
"""
from datetime import datetime, timezone as dt_timezone
from decimal import Decimal
from io import StringIO
from unittest.mock import patch
import itertools
import threading
import uuid

from django.core.management import call_command
from django.db import DatabaseError, connection
from django.test import TestCase, TransactionTestCase, override_settings
from rest_framework import status

from backend.catalog.models import Product
from backend.core.exceptions import (
    EmptyCart, InsufficientStock, InvalidPaymentMode, InvalidPrice, InvalidQuantity,
    PersistenceError, ProductNotFound, SalesError, TotalOutOfRange,
)
from backend.core.models import AuditLog, User
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.inventory.ledger import StockLedger
from backend.pos.models import Sale, SaleItem
from backend.pos.services import (
    CheckoutState, SaleTransactionProcessor, coerce_price, max_sale_total, normalize_payment_mode,
)


class RacingLedger(StockLedger):
    """Ledger that lets another terminal sell the stock between validation and decrement"""

    def __init__(self, sold_elsewhere):
        self.sold_elsewhere = sold_elsewhere

    def decrement_stock(self, product_id, amount):
        Product.objects.filter(pk=product_id).update(quantity=self.sold_elsewhere)
        return super().decrement_stock(product_id, amount)


class CheckoutValidationTests(TestCase):
    """Test that invalid carts are rejected before anything is written"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.product = TestDataFactory.create_product(price=Decimal('9.99'), quantity=5)
        self.processor = SaleTransactionProcessor()

    def assertNothingWritten(self, quantity=5):
        self.assertEqual(Sale.objects.count(), 0)
        self.assertEqual(SaleItem.objects.count(), 0)
        self.product.refresh_from_db()
        self.assertEqual(self.product.quantity, quantity)

    def test_insufficient_stock(self):
        items = [TestDataFactory.cart_item(self.product, 10, '9.99')]
        with self.assertRaises(InsufficientStock) as ctx:
            self.processor.checkout({'total': '99.90'}, items, user=self.user)
        self.assertEqual(ctx.exception.details['requested'], 10)
        self.assertEqual(ctx.exception.details['available'], 5)
        self.assertEqual(ctx.exception.state, CheckoutState.VALIDATING)
        self.assertNothingWritten()

    def test_duplicate_lines_are_checked_together(self):
        items = [
            TestDataFactory.cart_item(self.product, 3),
            TestDataFactory.cart_item(self.product, 3),
        ]
        with self.assertRaises(InsufficientStock) as ctx:
            self.processor.checkout({}, items, user=self.user)
        self.assertEqual(ctx.exception.details['requested'], 6)
        self.assertNothingWritten()

    def test_unknown_product(self):
        missing = str(uuid.uuid4())
        items = [
            TestDataFactory.cart_item(self.product, 1),
            {'product_id': missing, 'quantity': 1, 'price': '1.00'},
        ]
        with self.assertRaises(ProductNotFound) as ctx:
            self.processor.checkout({}, items, user=self.user)
        self.assertEqual(ctx.exception.details['product_id'], missing)
        self.assertNothingWritten()

    def test_malformed_product_id(self):
        with self.assertRaises(ProductNotFound):
            self.processor.checkout({}, [{'product_id': 'not-a-uuid', 'quantity': 1, 'price': '1.00'}])
        self.assertNothingWritten()

    def test_invalid_quantities(self):
        for quantity in (0, -1, '2.5', 'two', None, True):
            with self.subTest(quantity=quantity):
                items = [{'product_id': str(self.product.pk), 'quantity': quantity, 'price': '9.99'}]
                with self.assertRaises(InvalidQuantity):
                    self.processor.checkout({}, items, user=self.user)
        self.assertNothingWritten()

    def test_whole_number_quantity_strings_are_accepted(self):
        cart = self.processor.validate({}, [{'product_id': str(self.product.pk), 'quantity': '2', 'price': '9.99'}])
        self.assertEqual(cart.lines[0].quantity, 2)

    def test_invalid_prices(self):
        for price in ('-0.01', 'abc', None, 'NaN', '100000000', '0.005', '9.999'):
            with self.subTest(price=price):
                items = [{'product_id': str(self.product.pk), 'quantity': 1, 'price': price}]
                with self.assertRaises(InvalidPrice):
                    self.processor.checkout({}, items, user=self.user)
        self.assertNothingWritten()

    def test_empty_cart(self):
        with self.assertRaises(EmptyCart):
            self.processor.checkout({'total': '0'}, [], user=self.user)
        self.assertNothingWritten()

    def test_invalid_payment_mode(self):
        items = [TestDataFactory.cart_item(self.product, 1)]
        with self.assertRaises(InvalidPaymentMode):
            self.processor.checkout({'payment_mode': 'Cheque'}, items, user=self.user)
        self.assertNothingWritten()

    def test_validate_has_no_side_effects(self):
        cart = self.processor.validate({'payment_mode': 'card'}, [TestDataFactory.cart_item(self.product, 2)])
        self.assertEqual(cart.total, Decimal('19.98'))
        self.assertEqual(cart.payment_mode, Sale.PAYMENT_CARD)
        self.assertNothingWritten()


class CheckoutTests(TestCase):
    """Test successful checkouts"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.product = TestDataFactory.create_product(name='Pencil', sku='PCL-1', price=Decimal('9.99'), quantity=5)
        self.processor = SaleTransactionProcessor()

    def test_checkout_records_sale_and_decrements_stock(self):
        items = [TestDataFactory.cart_item(self.product, 2, '9.99')]
        sale = self.processor.checkout({'total': '19.98', 'customer_name': 'Asha'}, items, user=self.user)

        self.assertEqual(sale.total, Decimal('19.98'))
        self.assertEqual(sale.payment_mode, Sale.PAYMENT_CASH)
        self.assertEqual(sale.customer_name, 'Asha')
        self.assertEqual(sale.created_by, self.user)

        item = SaleItem.objects.get(sale=sale)
        self.assertEqual(item.quantity, 2)
        self.assertEqual(item.price, Decimal('9.99'))
        self.assertEqual(item.product_name, 'Pencil')
        self.assertEqual(item.product_sku, 'PCL-1')

        self.product.refresh_from_db()
        self.assertEqual(self.product.quantity, 3)

    def test_total_is_recomputed(self):
        items = [TestDataFactory.cart_item(self.product, 2, '9.99')]
        with self.assertLogs('backend.pos.services', level='WARNING') as logs:
            sale = self.processor.checkout({'total': '1.00'}, items, user=self.user)
        self.assertEqual(sale.total, Decimal('19.98'))
        self.assertTrue(any('differs from computed total' in line for line in logs.output))

    def test_total_matches_items(self):
        other = TestDataFactory.create_product(price=Decimal('0.35'), quantity=10)
        items = [
            TestDataFactory.cart_item(self.product, 1, '9.99'),
            TestDataFactory.cart_item(other, 3, '0.35'),
        ]
        sale = self.processor.checkout({}, items, user=self.user)
        self.assertEqual(sale.total, Decimal('11.04'))
        sale.refresh_from_db()
        self.assertEqual(sale.total, sale.items_total())

    def test_sub_cent_price_is_rejected_not_rounded(self):
        other = TestDataFactory.create_product(price=Decimal('0.01'), quantity=100)
        with self.assertRaises(InvalidPrice):
            self.processor.checkout({}, [TestDataFactory.cart_item(other, 100, '0.005')], user=self.user)
        self.assertEqual(Sale.objects.count(), 0)
        other.refresh_from_db()
        self.assertEqual(other.quantity, 100)

    def test_total_beyond_recordable_amount(self):
        expensive = TestDataFactory.create_product(price=Decimal('99999999.99'), quantity=1000)
        items = [TestDataFactory.cart_item(expensive, 1000, '99999999.99')]
        with self.assertRaises(TotalOutOfRange) as ctx:
            self.processor.checkout({}, items, user=self.user)
        self.assertEqual(ctx.exception.status_code, 400)
        self.assertEqual(ctx.exception.details['maximum'], '9999999999.99')
        self.assertEqual(Sale.objects.count(), 0)
        expensive.refresh_from_db()
        self.assertEqual(expensive.quantity, 1000)

    def test_total_at_recordable_limit(self):
        expensive = TestDataFactory.create_product(price=Decimal('99999999.99'), quantity=200)
        sale = self.processor.checkout({}, [TestDataFactory.cart_item(expensive, 100, '99999999.99')], user=self.user)
        sale.refresh_from_db()
        self.assertEqual(sale.total, Decimal('9999999999.00'))

    def test_cart_price_is_kept_when_catalog_changes(self):
        items = [TestDataFactory.cart_item(self.product, 1, '8.50')]
        Product.objects.filter(pk=self.product.pk).update(price=Decimal('12.00'))
        sale = self.processor.checkout({}, items, user=self.user)
        self.assertEqual(sale.items.get().price, Decimal('8.50'))
        self.assertEqual(sale.total, Decimal('8.50'))

    def test_duplicate_lines_each_recorded(self):
        items = [
            TestDataFactory.cart_item(self.product, 2),
            TestDataFactory.cart_item(self.product, 3),
        ]
        sale = self.processor.checkout({}, items, user=self.user)
        self.assertEqual([item.quantity for item in sale.items.all()], [2, 3])
        self.product.refresh_from_db()
        self.assertEqual(self.product.quantity, 0)

    def test_zero_price_line(self):
        sale = self.processor.checkout({}, [TestDataFactory.cart_item(self.product, 1, '0')], user=self.user)
        self.assertEqual(sale.total, Decimal('0.00'))

    def test_customer_name_is_trimmed(self):
        sale = self.processor.checkout({'customer_name': '   '}, [TestDataFactory.cart_item(self.product, 1)])
        self.assertIsNone(sale.customer_name)
        sale = self.processor.checkout({'customer_name': '  Ravi '}, [TestDataFactory.cart_item(self.product, 1)])
        self.assertEqual(sale.customer_name, 'Ravi')

    def test_payment_mode_is_normalized(self):
        sale = self.processor.checkout({'payment_mode': 'upi'}, [TestDataFactory.cart_item(self.product, 1)])
        self.assertEqual(sale.payment_mode, Sale.PAYMENT_UPI)
        sale = self.processor.checkout({'payment_mode': ''}, [TestDataFactory.cart_item(self.product, 1)])
        self.assertEqual(sale.payment_mode, Sale.PAYMENT_CASH)

    def test_last_unit_sold_twice(self):
        self.product.quantity = 1
        self.product.save()
        first = self.processor.checkout({}, [TestDataFactory.cart_item(self.product, 1)], user=self.user)
        self.assertIsNotNone(first.pk)
        with self.assertRaises(InsufficientStock):
            self.processor.checkout({}, [TestDataFactory.cart_item(self.product, 1)], user=self.user)
        self.product.refresh_from_db()
        self.assertEqual(self.product.quantity, 0)
        self.assertEqual(Sale.objects.count(), 1)

    def test_injected_clock_and_ids(self):
        fixed = datetime(2024, 3, 1, 10, 30, tzinfo=dt_timezone.utc)
        ids = (uuid.UUID(int=n) for n in itertools.count(1))
        processor = SaleTransactionProcessor(clock=lambda: fixed, id_factory=lambda: next(ids))

        other = TestDataFactory.create_product(quantity=4)
        sale = processor.checkout({}, [
            TestDataFactory.cart_item(self.product, 1),
            TestDataFactory.cart_item(other, 1),
        ])

        self.assertEqual(sale.pk, uuid.UUID(int=1))
        self.assertEqual(sale.created_at, fixed)
        items = list(sale.items.all())
        self.assertEqual([item.pk for item in items], [uuid.UUID(int=2), uuid.UUID(int=3)])
        self.assertEqual([item.line_number for item in items], [1, 2])
        self.assertTrue(all(item.created_at == fixed for item in items))

    def test_coerce_price_precision(self):
        self.assertEqual(coerce_price(3), Decimal('3.00'))
        self.assertEqual(coerce_price('9.990'), Decimal('9.99'))
        with self.assertRaises(InvalidPrice):
            coerce_price('0.005')

    def test_max_sale_total_follows_column(self):
        self.assertEqual(max_sale_total(), Decimal('9999999999.99'))

    def test_normalize_payment_mode(self):
        self.assertEqual(normalize_payment_mode(None), Sale.PAYMENT_CASH)
        self.assertEqual(normalize_payment_mode(' CARD '), Sale.PAYMENT_CARD)


class CheckoutFailureTests(TestCase):
    """Test failures after validation has passed"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.product = TestDataFactory.create_product(quantity=5)
        self.items = [TestDataFactory.cart_item(self.product, 2)]

    def test_atomic_checkout_rolls_back_when_stock_runs_out(self):
        processor = SaleTransactionProcessor(ledger=RacingLedger(sold_elsewhere=1), atomic=True)
        with self.assertLogs('backend.pos.services', level='ERROR') as logs:
            with self.assertRaises(InsufficientStock) as ctx:
                processor.checkout({}, self.items, user=self.user)

        self.assertEqual(ctx.exception.state, CheckoutState.APPLYING_STOCK)
        self.assertNotIn('partial', ctx.exception.details)
        self.assertTrue(any('rolled back' in line for line in logs.output))
        self.assertEqual(Sale.objects.count(), 0)
        self.assertEqual(SaleItem.objects.count(), 0)

    def test_non_atomic_checkout_leaves_partial_sale(self):
        processor = SaleTransactionProcessor(ledger=RacingLedger(sold_elsewhere=1), atomic=False)
        with self.assertLogs('backend.pos.services', level='ERROR') as logs:
            with self.assertRaises(InsufficientStock) as ctx:
                processor.checkout({}, self.items, user=self.user)

        sale = Sale.objects.get()
        self.assertEqual(ctx.exception.details['sale_id'], str(sale.pk))
        self.assertTrue(ctx.exception.details['partial'])
        self.assertTrue(any('Manual reconciliation required' in line for line in logs.output))
        self.assertEqual(sale.items.count(), 1)
        self.product.refresh_from_db()
        self.assertEqual(self.product.quantity, 1)

    def test_item_write_failure_atomic(self):
        processor = SaleTransactionProcessor(atomic=True)
        with patch.object(SaleTransactionProcessor, '_persist_items', side_effect=DatabaseError('disk full')):
            with self.assertRaises(PersistenceError) as ctx:
                processor.checkout({}, self.items, user=self.user)
        self.assertEqual(ctx.exception.state, CheckoutState.PERSISTING_ITEMS)
        self.assertEqual(ctx.exception.to_dict()['error'], 'persistence_error')
        self.assertEqual(Sale.objects.count(), 0)
        self.product.refresh_from_db()
        self.assertEqual(self.product.quantity, 5)

    def test_item_write_failure_non_atomic(self):
        processor = SaleTransactionProcessor(atomic=False)
        with patch.object(SaleTransactionProcessor, '_persist_items', side_effect=DatabaseError('disk full')):
            with self.assertRaises(PersistenceError) as ctx:
                processor.checkout({}, self.items, user=self.user)
        self.assertTrue(ctx.exception.details['partial'])
        sale = Sale.objects.get()
        self.assertEqual(sale.items.count(), 0)
        self.product.refresh_from_db()
        self.assertEqual(self.product.quantity, 5)

    def test_header_write_failure_writes_nothing(self):
        processor = SaleTransactionProcessor(atomic=False)
        with patch.object(SaleTransactionProcessor, '_persist_sale', side_effect=DatabaseError('locked')):
            with self.assertRaises(PersistenceError) as ctx:
                processor.checkout({}, self.items, user=self.user)
        self.assertEqual(ctx.exception.state, CheckoutState.PERSISTING_SALE)
        self.assertNotIn('partial', ctx.exception.details)
        self.assertEqual(Sale.objects.count(), 0)


class SaleAPITests(TestCase):
    """Test the sale endpoints"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)
        self.product = TestDataFactory.create_product(price=Decimal('9.99'), quantity=5)

    def checkout_payload(self, quantity=2, **sale):
        return {
            'sale': sale,
            'items': [TestDataFactory.cart_item(self.product, quantity, '9.99')],
        }

    def test_checkout(self):
        payload = self.checkout_payload(total='19.98', customer_name='Meena', payment_mode='Card')
        response = self.client.post('/api/v1/pos/sales/', payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['total'], '19.98')
        self.assertEqual(response.data['payment_mode'], 'Card')
        self.assertEqual(response.data['created_by_username'], self.user.username)
        self.assertEqual(len(response.data['items']), 1)
        self.product.refresh_from_db()
        self.assertEqual(self.product.quantity, 3)

        log = AuditLog.objects.get(action='sale_checkout')
        self.assertEqual(log.object_id, response.data['id'])
        self.assertEqual(log.user, self.user)

    def test_checkout_without_sale_header(self):
        response = self.client.post('/api/v1/pos/sales/', {'items': [TestDataFactory.cart_item(self.product, 1)]}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['payment_mode'], Sale.PAYMENT_CASH)

    def test_checkout_insufficient_stock(self):
        response = self.client.post('/api/v1/pos/sales/', self.checkout_payload(quantity=10), format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'insufficient_stock')
        self.assertEqual(response.data['available'], 5)
        self.assertEqual(response.data['state'], CheckoutState.VALIDATING)
        self.assertEqual(Sale.objects.count(), 0)

    def test_checkout_unknown_product(self):
        payload = {'items': [{'product_id': str(uuid.uuid4()), 'quantity': 1, 'price': '1.00'}]}
        response = self.client.post('/api/v1/pos/sales/', payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error'], 'product_not_found')

    def test_checkout_empty_cart(self):
        response = self.client.post('/api/v1/pos/sales/', {'sale': {}, 'items': []}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'empty_cart')

    def test_checkout_missing_items_key(self):
        response = self.client.post('/api/v1/pos/sales/', {'sale': {}}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('items', response.data)

    def test_checkout_invalid_quantity(self):
        response = self.client.post('/api/v1/pos/sales/', self.checkout_payload(quantity=0), format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'invalid_quantity')

    def test_checkout_total_too_large(self):
        self.product.quantity = 1000
        self.product.save()
        payload = {'items': [TestDataFactory.cart_item(self.product, 1000, '99999999.99')]}
        response = self.client.post('/api/v1/pos/sales/', payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'total_out_of_range')
        self.assertEqual(Sale.objects.count(), 0)

        self.assertEqual(self.client.get('/api/v1/pos/sales/').status_code, status.HTTP_200_OK)
        self.assertEqual(self.client.get('/api/v1/reports/dashboard/').status_code, status.HTTP_200_OK)

    def test_checkout_requires_authentication(self):
        self.client.logout()
        response = self.client.post('/api/v1/pos/sales/', self.checkout_payload(), format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(Sale.objects.count(), 0)

    @override_settings(POS_ATOMIC_CHECKOUT=False)
    def test_partial_failure_is_audited(self):
        with patch.object(SaleTransactionProcessor, '_persist_items', side_effect=DatabaseError('disk full')):
            response = self.client.post('/api/v1/pos/sales/', self.checkout_payload(), format='json')
        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(response.data['error'], 'persistence_error')
        self.assertTrue(response.data['partial'])
        self.assertEqual(response.data['state'], CheckoutState.PERSISTING_ITEMS)

        log = AuditLog.objects.get(action='sale_failed')
        self.assertEqual(log.object_id, response.data['sale_id'])
        self.assertEqual(log.changes['error'], 'persistence_error')

    def test_failure_in_atomic_mode_is_not_audited(self):
        with patch.object(SaleTransactionProcessor, '_persist_items', side_effect=DatabaseError('disk full')):
            response = self.client.post('/api/v1/pos/sales/', self.checkout_payload(), format='json')
        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertNotIn('partial', response.data)
        self.assertFalse(AuditLog.objects.filter(action='sale_failed').exists())
        self.assertEqual(Sale.objects.count(), 0)

    def test_validate_endpoint(self):
        response = self.client.post('/api/v1/pos/sales/validate/', self.checkout_payload(quantity=3), format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['valid'])
        self.assertEqual(response.data['total'], '29.97')
        self.assertEqual(response.data['lines'][0]['line_total'], '29.97')
        self.assertEqual(Sale.objects.count(), 0)
        self.product.refresh_from_db()
        self.assertEqual(self.product.quantity, 5)

    def test_validate_endpoint_rejects(self):
        response = self.client.post('/api/v1/pos/sales/validate/', self.checkout_payload(quantity=6), format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'insufficient_stock')

    def test_list_sales(self):
        TestDataFactory.create_sale(user=self.user, items=[(self.product, 1, '9.99')], payment_mode=Sale.PAYMENT_CARD)
        TestDataFactory.create_sale(user=self.user, items=[(self.product, 2, '9.99')], customer_name='Kiran')
        response = self.client.get('/api/v1/pos/sales/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 2)
        self.assertEqual(response.data['results'][0]['item_count'], 1)

        response = self.client.get('/api/v1/pos/sales/?payment_mode=card')
        self.assertEqual(response.data['count'], 1)
        response = self.client.get('/api/v1/pos/sales/?customer=kir')
        self.assertEqual(response.data['count'], 1)

    def test_list_sales_bad_page(self):
        response = self.client.get('/api/v1/pos/sales/?page=abc')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_list_sales_bad_date(self):
        response = self.client.get('/api/v1/pos/sales/?date_from=yesterday')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('date_from', response.data)

    def test_list_sales_date_range(self):
        sale = TestDataFactory.create_sale(user=self.user, items=[(self.product, 1, '9.99')])
        Sale.objects.filter(pk=sale.pk).update(created_at=datetime(2024, 1, 15, 12, 0, tzinfo=dt_timezone.utc))
        TestDataFactory.create_sale(user=self.user, items=[(self.product, 1, '9.99')])

        response = self.client.get('/api/v1/pos/sales/?date_from=2024-01-15&date_to=2024-01-15')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([row['id'] for row in response.data['results']], [str(sale.pk)])

    def test_user_without_store_role_cannot_check_out(self):
        clerk = TestDataFactory.create_user()
        User.objects.filter(pk=clerk.pk).update(role='')
        self.client.authenticate_user(clerk)

        response = self.client.post('/api/v1/pos/sales/', self.checkout_payload(), format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        response = self.client.post('/api/v1/pos/sales/validate/', self.checkout_payload(), format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(Sale.objects.count(), 0)

        self.assertEqual(self.client.get('/api/v1/pos/sales/').status_code, status.HTTP_200_OK)
        self.assertFalse(self.client.get('/api/v1/auth/me/').data['can_checkout'])

    def test_sale_detail(self):
        sale = TestDataFactory.create_sale(user=self.user, items=[(self.product, 2, '9.99')])
        response = self.client.get(f'/api/v1/pos/sales/{sale.pk}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['total'], '19.98')
        self.assertEqual(response.data['items'][0]['line_total'], '19.98')

    def test_sale_detail_not_found(self):
        response = self.client.get(f'/api/v1/pos/sales/{uuid.uuid4()}/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)


class SaleIntegrityCommandTests(TestCase):

    def test_reports_inconsistent_sales(self):
        product = TestDataFactory.create_product()
        TestDataFactory.create_sale(items=[(product, 1, '9.99')])
        Sale.objects.create(total=Decimal('5.00'))
        mismatched = TestDataFactory.create_sale(items=[(product, 1, '9.99')])
        Sale.objects.filter(pk=mismatched.pk).update(total=Decimal('1.00'))

        out = StringIO()
        call_command('check_sale_integrity', '--verbose', stdout=out)
        output = out.getvalue()
        self.assertIn('Found 1 sales without line items', output)
        self.assertIn('Found 1 sales whose total differs', output)
        self.assertIn(str(mismatched.pk), output)
        self.assertIn('2 inconsistent sales', output)

    def test_clean_data(self):
        product = TestDataFactory.create_product()
        TestDataFactory.create_sale(items=[(product, 2, '9.99')])
        out = StringIO()
        call_command('check_sale_integrity', stdout=out)
        self.assertIn('All sales are consistent', out.getvalue())

    def test_reports_checkout_that_failed_during_stock_update(self):
        # Header and items are consistent, only the stock decrement failed
        user = TestDataFactory.create_user()
        product = TestDataFactory.create_product(quantity=5)
        processor = SaleTransactionProcessor(ledger=RacingLedger(sold_elsewhere=0), atomic=False)
        with self.assertLogs('backend.pos.services', level='ERROR'):
            with self.assertRaises(InsufficientStock) as ctx:
                processor.checkout({}, [TestDataFactory.cart_item(product, 1)], user=user)
        sale_id = ctx.exception.details['sale_id']
        AuditLog.objects.create(
            user=user,
            action='sale_failed',
            model_name='Sale',
            object_id=sale_id,
            changes={'state': ctx.exception.state, 'error': ctx.exception.code, 'message': ctx.exception.message},
        )

        out = StringIO()
        call_command('check_sale_integrity', '--verbose', stdout=out)
        output = out.getvalue()
        self.assertIn('Found 1 failed checkouts', output)
        self.assertIn(f'Sale {sale_id} (present): failed while applying_stock', output)
        self.assertIn('1 inconsistent sales', output)


class ConcurrentCheckoutTests(TransactionTestCase):
    """Two terminals selling the last unit at the same moment"""

    def test_last_unit_sold_by_two_terminals(self):
        product = TestDataFactory.create_product(quantity=1)
        barrier = threading.Barrier(2)
        results = []
        lock = threading.Lock()

        def sell():
            outcome = None
            try:
                barrier.wait(timeout=10)
                sale = SaleTransactionProcessor().checkout({}, [TestDataFactory.cart_item(product, 1)])
                outcome = sale
            except SalesError as exc:
                outcome = exc
            finally:
                connection.close()
            with lock:
                results.append(outcome)

        threads = [threading.Thread(target=sell) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        self.assertEqual(len(results), 2)
        sales = [r for r in results if isinstance(r, Sale)]
        errors = [r for r in results if isinstance(r, SalesError)]
        self.assertEqual(len(sales), 1)
        self.assertEqual(len(errors), 1)
        self.assertIsInstance(errors[0], InsufficientStock)
        self.assertEqual(errors[0].status_code, 400)

        product.refresh_from_db()
        self.assertEqual(product.quantity, 0)
        self.assertEqual(Sale.objects.count(), 1)
        self.assertEqual(SaleItem.objects.count(), 1)
