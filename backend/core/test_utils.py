"""
Test utilities and factories for creating test data
"""
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken
from backend.catalog.models import Product
from backend.pos.models import Sale, SaleItem
from decimal import Decimal
import random
import string

User = get_user_model()


class TestDataFactory:
    """Factory class for creating test data"""

    @staticmethod
    def random_string(length=10):
        """Generate a random string"""
        return ''.join(random.choices(string.ascii_letters + string.digits, k=length))

    @staticmethod
    def create_user(username=None, email=None, password='testpass123', role=User.ROLE_SALES, is_superuser=False):
        """Create a test user"""
        if not username:
            username = f'testuser_{TestDataFactory.random_string(6)}'
        if not email:
            email = f'{username}@test.com'
        return User.objects.create_user(
            username=username,
            email=email,
            password=password,
            role=role,
            is_superuser=is_superuser,
        )

    @staticmethod
    def create_admin(**kwargs):
        return TestDataFactory.create_user(role=User.ROLE_ADMIN, **kwargs)

    @staticmethod
    def create_manager(**kwargs):
        return TestDataFactory.create_user(role=User.ROLE_MANAGER, **kwargs)

    @staticmethod
    def create_product(name=None, sku=None, price=None, quantity=10, low_stock_threshold=5):
        """Create a test product"""
        if not name:
            name = f'Product_{TestDataFactory.random_string(6)}'
        if not sku:
            sku = f'SKU-{TestDataFactory.random_string(8).upper()}'
        return Product.objects.create(
            name=name,
            sku=sku,
            price=price if price is not None else Decimal('9.99'),
            quantity=quantity,
            low_stock_threshold=low_stock_threshold,
        )

    @staticmethod
    def create_sale(user=None, items=None, payment_mode=Sale.PAYMENT_CASH, customer_name=None):
        """Create a sale directly, bypassing checkout (no stock change).

        ``items`` is a list of (product, quantity, price) tuples.
        """
        items = items or []
        total = sum((Decimal(str(price)) * quantity for _, quantity, price in items), Decimal('0.00'))
        sale = Sale.objects.create(
            total=total,
            payment_mode=payment_mode,
            customer_name=customer_name,
            created_by=user,
        )
        for number, (product, quantity, price) in enumerate(items, start=1):
            SaleItem.objects.create(
                sale=sale,
                product=product,
                product_name=product.name,
                product_sku=product.sku,
                quantity=quantity,
                price=Decimal(str(price)),
                line_number=number,
            )
        return sale

    @staticmethod
    def cart_item(product, quantity=1, price=None):
        """Build a checkout line for a product"""
        return {
            'product_id': str(product.pk),
            'quantity': quantity,
            'price': str(price if price is not None else product.price),
        }


class AuthenticatedAPIClient(APIClient):
    """APIClient with authentication helper"""

    def authenticate_user(self, user):
        """Authenticate the client with a user"""
        refresh = RefreshToken.for_user(user)
        self.credentials(HTTP_AUTHORIZATION=f'Bearer {refresh.access_token}')
        return self

    def logout(self):
        """Remove authentication"""
        self.credentials()
