"""
Test suite for Reports module
Tests: dashboard figures, sales analytics, role gating
"""
from datetime import timedelta
from decimal import Decimal
from django.test import TestCase
from django.utils import timezone
from rest_framework import status
from backend.pos.models import Sale
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient


class DashboardTests(TestCase):
    """Test the dashboard endpoint"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)

    def test_dashboard_empty(self):
        response = self.client.get('/api/v1/reports/dashboard/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['products']['total'], 0)
        self.assertEqual(response.data['sales']['count'], 0)
        self.assertEqual(response.data['sales']['revenue'], 0.0)
        self.assertEqual(response.data['recent_sales'], [])

    def test_dashboard_figures(self):
        pen = TestDataFactory.create_product(quantity=0, low_stock_threshold=5)
        TestDataFactory.create_product(quantity=50, low_stock_threshold=5)
        TestDataFactory.create_sale(user=self.user, items=[(pen, 2, '9.99')])
        TestDataFactory.create_sale(user=self.user, items=[(pen, 1, '5.00')])

        response = self.client.get('/api/v1/reports/dashboard/')
        self.assertEqual(response.data['products'], {'total': 2, 'low_stock': 1, 'out_of_stock': 1})
        self.assertEqual(response.data['sales']['count'], 2)
        self.assertAlmostEqual(response.data['sales']['revenue'], 24.98)
        self.assertEqual(response.data['sales']['today_count'], 2)
        self.assertEqual(len(response.data['recent_sales']), 2)

    def test_dashboard_requires_authentication(self):
        self.client.logout()
        response = self.client.get('/api/v1/reports/dashboard/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)


class AnalyticsTests(TestCase):
    """Test the sales analytics endpoint"""

    def setUp(self):
        self.manager = TestDataFactory.create_manager()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.manager)
        self.pen = TestDataFactory.create_product(name='Pen', price=Decimal('2.00'), quantity=10)
        self.book = TestDataFactory.create_product(name='Book', price=Decimal('15.00'), quantity=3)

    def test_analytics_summary(self):
        TestDataFactory.create_sale(user=self.manager, items=[(self.pen, 3, '2.00'), (self.book, 1, '15.00')])
        TestDataFactory.create_sale(user=self.manager, items=[(self.pen, 1, '2.00')], payment_mode=Sale.PAYMENT_UPI)

        response = self.client.get('/api/v1/reports/analytics/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        summary = response.data['summary']
        self.assertEqual(summary['total_sales'], 2)
        self.assertAlmostEqual(summary['total_revenue'], 23.0)
        self.assertAlmostEqual(summary['average_sale'], 11.5)
        self.assertAlmostEqual(summary['inventory_value'], 65.0)

        modes = {row['payment_mode']: row['count'] for row in response.data['payment_modes']}
        self.assertEqual(modes, {'Cash': 1, 'UPI': 1})

        top = response.data['top_products']
        self.assertEqual(top[0]['product_name'], 'Book')
        self.assertEqual(top[1]['product_name'], 'Pen')
        self.assertEqual(top[1]['total_quantity'], 4)
        self.assertEqual(top[1]['sale_count'], 2)

        self.assertEqual(len(response.data['sales_by_date']), 1)
        self.assertEqual(response.data['sales_by_date'][0]['count'], 2)

    def test_analytics_date_range_excludes_old_sales(self):
        sale = TestDataFactory.create_sale(user=self.manager, items=[(self.pen, 1, '2.00')])
        Sale.objects.filter(pk=sale.pk).update(created_at=timezone.now() - timedelta(days=90))

        response = self.client.get('/api/v1/reports/analytics/')
        self.assertEqual(response.data['summary']['total_sales'], 0)

        old_day = (timezone.now() - timedelta(days=90)).date()
        response = self.client.get(f'/api/v1/reports/analytics/?date_from={old_day - timedelta(days=1)}&date_to={old_day + timedelta(days=1)}')
        self.assertEqual(response.data['summary']['total_sales'], 1)

    def test_analytics_limit(self):
        TestDataFactory.create_sale(user=self.manager, items=[(self.pen, 1, '2.00'), (self.book, 1, '15.00')])
        response = self.client.get('/api/v1/reports/analytics/?limit=1')
        self.assertEqual(len(response.data['top_products']), 1)

    def test_analytics_bad_date(self):
        response = self.client.get('/api/v1/reports/analytics/?date_from=01/02/2024')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_analytics_forbidden_for_sales(self):
        self.client.authenticate_user(TestDataFactory.create_user())
        response = self.client.get('/api/v1/reports/analytics/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_analytics_allowed_for_admin(self):
        self.client.authenticate_user(TestDataFactory.create_admin())
        response = self.client.get('/api/v1/reports/analytics/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
