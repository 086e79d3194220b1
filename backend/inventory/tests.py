"""
Test suite for Inventory module
Tests: stock decrements, refusal paths, low stock listing
"""
import uuid
from django.test import TestCase
from rest_framework import status
from backend.catalog.models import Product
from backend.core.exceptions import InsufficientStock, InvalidQuantity, ProductNotFound
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.inventory.ledger import StockLedger, normalize_product_id


class StockLedgerTests(TestCase):
    """Test the stock ledger"""

    def setUp(self):
        self.ledger = StockLedger()
        self.product = TestDataFactory.create_product(quantity=5)

    def test_decrement_stock(self):
        product = self.ledger.decrement_stock(self.product.pk, 2)
        self.assertEqual(product.quantity, 3)
        self.product.refresh_from_db()
        self.assertEqual(self.product.quantity, 3)

    def test_decrement_accepts_string_id(self):
        self.ledger.decrement_stock(str(self.product.pk), 5)
        self.product.refresh_from_db()
        self.assertEqual(self.product.quantity, 0)

    def test_decrement_more_than_available(self):
        with self.assertRaises(InsufficientStock) as ctx:
            self.ledger.decrement_stock(self.product.pk, 6)
        self.assertEqual(ctx.exception.details['requested'], 6)
        self.assertEqual(ctx.exception.details['available'], 5)
        self.product.refresh_from_db()
        self.assertEqual(self.product.quantity, 5)

    def test_last_unit_can_only_be_taken_once(self):
        self.ledger.decrement_stock(self.product.pk, 4)
        self.ledger.decrement_stock(self.product.pk, 1)
        with self.assertRaises(InsufficientStock):
            self.ledger.decrement_stock(self.product.pk, 1)
        self.product.refresh_from_db()
        self.assertEqual(self.product.quantity, 0)

    def test_decrement_unknown_product(self):
        with self.assertRaises(ProductNotFound):
            self.ledger.decrement_stock(uuid.uuid4(), 1)
        with self.assertRaises(ProductNotFound):
            self.ledger.decrement_stock('not-a-uuid', 1)

    def test_decrement_invalid_amount(self):
        for amount in (0, -2, 1.5, True, '1'):
            with self.subTest(amount=amount):
                with self.assertRaises(InvalidQuantity):
                    self.ledger.decrement_stock(self.product.pk, amount)
        self.product.refresh_from_db()
        self.assertEqual(self.product.quantity, 5)

    def test_get_product(self):
        self.assertEqual(self.ledger.get_product(str(self.product.pk)), self.product)
        self.assertIsNone(self.ledger.get_product('garbage'))
        self.assertIsNone(self.ledger.get_product(uuid.uuid4()))

    def test_get_products_skips_unknown_ids(self):
        other = TestDataFactory.create_product()
        found = self.ledger.get_products([self.product.pk, str(other.pk), 'garbage', str(uuid.uuid4())])
        self.assertEqual(set(found), {str(self.product.pk), str(other.pk)})

    def test_normalize_product_id(self):
        pk = uuid.uuid4()
        self.assertEqual(normalize_product_id(pk), pk)
        self.assertEqual(normalize_product_id(str(pk)), pk)
        self.assertIsNone(normalize_product_id(None))
        self.assertIsNone(normalize_product_id('123'))

    def test_low_stock_products(self):
        Product.objects.all().delete()
        low = TestDataFactory.create_product(name='Low', quantity=2, low_stock_threshold=5)
        empty = TestDataFactory.create_product(name='Empty', quantity=0, low_stock_threshold=5)
        TestDataFactory.create_product(name='Plenty', quantity=50, low_stock_threshold=5)
        self.assertEqual(list(self.ledger.low_stock_products()), [empty, low])


class LowStockAPITests(TestCase):

    def setUp(self):
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(TestDataFactory.create_user())

    def test_low_stock_list(self):
        TestDataFactory.create_product(sku='LOW-1', quantity=1, low_stock_threshold=3)
        TestDataFactory.create_product(sku='EDGE-1', quantity=3, low_stock_threshold=3)
        TestDataFactory.create_product(sku='OK-1', quantity=20, low_stock_threshold=3)
        response = self.client.get('/api/v1/inventory/low-stock/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 2)
        self.assertEqual([p['sku'] for p in response.data['results']], ['LOW-1', 'EDGE-1'])
        self.assertTrue(all(p['is_low_stock'] for p in response.data['results']))

    def test_low_stock_requires_authentication(self):
        self.client.logout()
        response = self.client.get('/api/v1/inventory/low-stock/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
