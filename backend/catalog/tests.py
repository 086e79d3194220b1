"""
Test suite for Catalog module
Tests: product CRUD, role gating, SKU uniqueness, filtering, deletion of sold products
"""
from decimal import Decimal
import uuid
from django.test import TestCase
from rest_framework import status
from backend.catalog.models import Product
from backend.core.models import AuditLog
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient


class ProductModelTests(TestCase):

    def test_str(self):
        product = TestDataFactory.create_product(name='Notebook', sku='NB-1')
        self.assertEqual(str(product), 'Notebook (NB-1)')

    def test_is_low_stock_at_threshold(self):
        product = TestDataFactory.create_product(quantity=5, low_stock_threshold=5)
        self.assertTrue(product.is_low_stock)
        product.quantity = 6
        self.assertFalse(product.is_low_stock)

    def test_stock_value(self):
        product = TestDataFactory.create_product(price=Decimal('2.50'), quantity=4)
        self.assertEqual(product.stock_value, Decimal('10.00'))


class ProductAPITests(TestCase):
    """Test product endpoints as an admin"""

    def setUp(self):
        self.admin = TestDataFactory.create_admin()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.admin)

    def test_create_product(self):
        data = {
            'name': 'Blue Pen',
            'sku': 'PEN-BLUE',
            'price': '1.25',
            'quantity': 100,
        }
        response = self.client.post('/api/v1/products/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['low_stock_threshold'], 10)
        self.assertFalse(response.data['is_low_stock'])
        product = Product.objects.get(sku='PEN-BLUE')
        self.assertEqual(product.price, Decimal('1.25'))
        self.assertTrue(AuditLog.objects.filter(action='create', object_id=str(product.id)).exists())

    def test_create_product_duplicate_sku(self):
        TestDataFactory.create_product(sku='DUP-1')
        data = {'name': 'Other', 'sku': 'dup-1', 'price': '1.00', 'quantity': 1}
        response = self.client.post('/api/v1/products/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('sku', response.data)

    def test_create_product_rejects_negative_values(self):
        data = {'name': 'Broken', 'sku': 'BRK-1', 'price': '-1.00', 'quantity': -3}
        response = self.client.post('/api/v1/products/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('price', response.data)
        self.assertIn('quantity', response.data)

    def test_create_product_rejects_zero_threshold(self):
        data = {'name': 'Zero', 'sku': 'ZERO-1', 'price': '1.00', 'quantity': 1, 'low_stock_threshold': 0}
        response = self.client.post('/api/v1/products/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_create_product_rejects_non_http_image(self):
        data = {'name': 'Img', 'sku': 'IMG-1', 'price': '1.00', 'image_url': 'ftp://example.com/a.png'}
        response = self.client.post('/api/v1/products/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('image_url', response.data)

    def test_list_products(self):
        TestDataFactory.create_product()
        TestDataFactory.create_product()
        response = self.client.get('/api/v1/products/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 2)

    def test_search_products(self):
        TestDataFactory.create_product(name='Green Tea', sku='TEA-G')
        TestDataFactory.create_product(name='Coffee', sku='COF-1')
        response = self.client.get('/api/v1/products/?search=tea')
        self.assertEqual([p['sku'] for p in response.data], ['TEA-G'])

    def test_filter_low_stock(self):
        TestDataFactory.create_product(sku='LOW-1', quantity=2, low_stock_threshold=5)
        TestDataFactory.create_product(sku='OK-1', quantity=50, low_stock_threshold=5)
        response = self.client.get('/api/v1/products/?low_stock=true')
        self.assertEqual([p['sku'] for p in response.data], ['LOW-1'])
        response = self.client.get('/api/v1/products/?low_stock=false')
        self.assertEqual([p['sku'] for p in response.data], ['OK-1'])

    def test_update_product(self):
        product = TestDataFactory.create_product(quantity=3)
        response = self.client.patch(f'/api/v1/products/{product.id}/', {'quantity': 30, 'price': '4.00'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        product.refresh_from_db()
        self.assertEqual(product.quantity, 30)
        self.assertEqual(product.price, Decimal('4.00'))
        log = AuditLog.objects.get(action='update', object_id=str(product.id))
        self.assertEqual(log.changes['quantity'], {'old': '3', 'new': '30'})

    def test_update_keeps_own_sku(self):
        product = TestDataFactory.create_product(sku='SAME-1')
        response = self.client.put(
            f'/api/v1/products/{product.id}/',
            {'name': 'Renamed', 'sku': 'SAME-1', 'price': '2.00', 'quantity': 1, 'low_stock_threshold': 1},
            format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['name'], 'Renamed')

    def test_get_missing_product(self):
        response = self.client.get(f'/api/v1/products/{uuid.uuid4()}/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_delete_product(self):
        product = TestDataFactory.create_product()
        response = self.client.delete(f'/api/v1/products/{product.id}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(Product.objects.filter(id=product.id).exists())

    def test_delete_sold_product_conflict(self):
        product = TestDataFactory.create_product()
        TestDataFactory.create_sale(user=self.admin, items=[(product, 1, '9.99')])
        response = self.client.delete(f'/api/v1/products/{product.id}/')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'product_in_use')
        self.assertTrue(Product.objects.filter(id=product.id).exists())


class ProductPermissionTests(TestCase):
    """Sales and manager users can read the catalog but not change it"""

    def setUp(self):
        self.product = TestDataFactory.create_product()
        self.client = AuthenticatedAPIClient()

    def test_unauthenticated_cannot_list(self):
        response = self.client.get('/api/v1/products/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_sales_can_read(self):
        self.client.authenticate_user(TestDataFactory.create_user())
        self.assertEqual(self.client.get('/api/v1/products/').status_code, status.HTTP_200_OK)
        self.assertEqual(self.client.get(f'/api/v1/products/{self.product.id}/').status_code, status.HTTP_200_OK)

    def test_sales_cannot_write(self):
        self.client.authenticate_user(TestDataFactory.create_user())
        response = self.client.post('/api/v1/products/', {'name': 'X', 'sku': 'X-1', 'price': '1.00'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        response = self.client.patch(f'/api/v1/products/{self.product.id}/', {'quantity': 0}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        response = self.client.delete(f'/api/v1/products/{self.product.id}/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_manager_cannot_write(self):
        self.client.authenticate_user(TestDataFactory.create_manager())
        response = self.client.delete(f'/api/v1/products/{self.product.id}/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertTrue(Product.objects.filter(id=self.product.id).exists())
