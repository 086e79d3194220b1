"""
Test suite for Core module
Tests: registration, login, role capabilities, user role management, audit logs
"""
from django.test import TestCase
from rest_framework import status
from backend.core.models import User, AuditLog
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.core.utils import create_audit_log


class UserModelTests(TestCase):
    """Test role checks on the User model"""

    def test_default_role_is_sales(self):
        user = TestDataFactory.create_user()
        self.assertEqual(user.role, User.ROLE_SALES)
        self.assertFalse(user.is_admin_role)

    def test_has_role(self):
        manager = TestDataFactory.create_manager()
        self.assertTrue(manager.has_role(User.ROLE_MANAGER, User.ROLE_ADMIN))
        self.assertFalse(manager.has_role(User.ROLE_ADMIN))

    def test_superuser_passes_every_role_check(self):
        user = TestDataFactory.create_user(is_superuser=True)
        self.assertTrue(user.has_role(User.ROLE_ADMIN))
        self.assertTrue(user.is_admin_role)

    def test_inactive_user_has_no_role(self):
        user = TestDataFactory.create_admin()
        user.is_active = False
        self.assertFalse(user.has_role(User.ROLE_ADMIN))


class AuthAPITests(TestCase):
    """Test registration, login and the current-user endpoint"""

    def setUp(self):
        self.client = AuthenticatedAPIClient()

    def test_register_creates_sales_user(self):
        data = {
            'username': 'newcashier',
            'email': 'cashier@test.com',
            'password': 'S3cure-Passw0rd!',
            'password_confirm': 'S3cure-Passw0rd!',
            'role': 'admin',
        }
        response = self.client.post('/api/v1/auth/register/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertIn('access', response.data)
        self.assertEqual(response.data['user']['role'], User.ROLE_SALES)
        self.assertEqual(User.objects.get(username='newcashier').role, User.ROLE_SALES)

    def test_register_password_mismatch(self):
        data = {
            'username': 'mismatch',
            'password': 'S3cure-Passw0rd!',
            'password_confirm': 'different-Passw0rd!',
        }
        response = self.client.post('/api/v1/auth/register/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('password', response.data)

    def test_login_returns_tokens_and_user(self):
        TestDataFactory.create_manager(username='boss', password='testpass123')
        response = self.client.post('/api/v1/auth/login/', {'username': 'boss', 'password': 'testpass123'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('access', response.data)
        self.assertIn('refresh', response.data)
        self.assertEqual(response.data['user']['role'], User.ROLE_MANAGER)

    def test_login_wrong_password(self):
        TestDataFactory.create_user(username='someone', password='testpass123')
        response = self.client.post('/api/v1/auth/login/', {'username': 'someone', 'password': 'nope'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_me_requires_authentication(self):
        response = self.client.get('/api/v1/auth/me/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_me_capabilities_for_sales(self):
        self.client.authenticate_user(TestDataFactory.create_user())
        response = self.client.get('/api/v1/auth/me/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(response.data['is_admin'])
        self.assertFalse(response.data['can_manage_products'])
        self.assertFalse(response.data['can_view_analytics'])
        self.assertTrue(response.data['can_checkout'])

    def test_me_capabilities_for_manager(self):
        self.client.authenticate_user(TestDataFactory.create_manager())
        response = self.client.get('/api/v1/auth/me/')
        self.assertTrue(response.data['can_view_analytics'])
        self.assertFalse(response.data['can_manage_users'])

    def test_me_capabilities_for_admin(self):
        self.client.authenticate_user(TestDataFactory.create_admin())
        response = self.client.get('/api/v1/auth/me/')
        self.assertTrue(response.data['is_admin'])
        self.assertTrue(response.data['can_manage_products'])
        self.assertTrue(response.data['can_manage_users'])


class UserManagementAPITests(TestCase):
    """Test admin-only user management"""

    def setUp(self):
        self.admin = TestDataFactory.create_admin()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.admin)

    def test_list_users(self):
        TestDataFactory.create_user()
        response = self.client.get('/api/v1/users/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertGreaterEqual(len(response.data), 2)

    def test_list_users_forbidden_for_sales(self):
        self.client.authenticate_user(TestDataFactory.create_user())
        response = self.client.get('/api/v1/users/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_admin_creates_user_with_role(self):
        data = {
            'username': 'floor_manager',
            'password': 'S3cure-Passw0rd!',
            'password_confirm': 'S3cure-Passw0rd!',
            'role': 'manager',
        }
        response = self.client.post('/api/v1/users/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['role'], User.ROLE_MANAGER)

    def test_update_role(self):
        user = TestDataFactory.create_user()
        response = self.client.patch(f'/api/v1/users/{user.id}/role/', {'role': 'manager'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        user.refresh_from_db()
        self.assertEqual(user.role, User.ROLE_MANAGER)
        log = AuditLog.objects.get(action='role_change', object_id=str(user.id))
        self.assertEqual(log.changes['role'], {'old': 'sales', 'new': 'manager'})
        self.assertEqual(log.user, self.admin)

    def test_update_role_rejects_unknown_role(self):
        user = TestDataFactory.create_user()
        response = self.client.patch(f'/api/v1/users/{user.id}/role/', {'role': 'owner'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'Invalid role')
        user.refresh_from_db()
        self.assertEqual(user.role, User.ROLE_SALES)

    def test_cannot_change_own_role(self):
        response = self.client.patch(f'/api/v1/users/{self.admin.id}/role/', {'role': 'sales'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.admin.refresh_from_db()
        self.assertEqual(self.admin.role, User.ROLE_ADMIN)

    def test_role_update_forbidden_for_manager(self):
        user = TestDataFactory.create_user()
        self.client.authenticate_user(TestDataFactory.create_manager())
        response = self.client.patch(f'/api/v1/users/{user.id}/role/', {'role': 'admin'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_role_is_not_writable_through_user_detail(self):
        user = TestDataFactory.create_user()
        response = self.client.patch(f'/api/v1/users/{user.id}/', {'role': 'admin', 'phone': '555-0100'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        user.refresh_from_db()
        self.assertEqual(user.role, User.ROLE_SALES)
        self.assertEqual(user.phone, '555-0100')

    def test_cannot_delete_self(self):
        response = self.client.delete(f'/api/v1/users/{self.admin.id}/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertTrue(User.objects.filter(id=self.admin.id).exists())


class AuditLogTests(TestCase):
    """Test audit log helper and listing"""

    def test_create_audit_log_skips_missing_fields(self):
        self.assertIsNone(create_audit_log(action='create', model_name='Product'))
        self.assertEqual(AuditLog.objects.count(), 0)

    def test_non_admin_sees_only_own_entries(self):
        user = TestDataFactory.create_user()
        other = TestDataFactory.create_user()
        create_audit_log(user=user, action='create', model_name='Product', object_id='1')
        create_audit_log(user=other, action='create', model_name='Product', object_id='2')

        client = AuthenticatedAPIClient()
        client.authenticate_user(user)
        response = client.get('/api/v1/audit-logs/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([entry['object_id'] for entry in response.data], ['1'])

    def test_admin_sees_all_entries_filtered_by_action(self):
        user = TestDataFactory.create_user()
        create_audit_log(user=user, action='create', model_name='Product', object_id='1')
        create_audit_log(user=user, action='delete', model_name='Product', object_id='1')

        client = AuthenticatedAPIClient()
        client.authenticate_user(TestDataFactory.create_admin())
        response = client.get('/api/v1/audit-logs/?action=delete')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 1)
        self.assertEqual(response.data[0]['action'], 'delete')

    def test_bad_date_filter_is_rejected(self):
        client = AuthenticatedAPIClient()
        client.authenticate_user(TestDataFactory.create_admin())
        response = client.get('/api/v1/audit-logs/?date_to=not-a-date')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('date_to', response.data)

    def test_filter_by_model(self):
        user = TestDataFactory.create_user()
        create_audit_log(user=user, action='create', model_name='Product', object_id='1')
        create_audit_log(user=user, action='sale_checkout', model_name='Sale', object_id='2')

        client = AuthenticatedAPIClient()
        client.authenticate_user(TestDataFactory.create_admin())
        response = client.get('/api/v1/audit-logs/?model=Sale')
        self.assertEqual([entry['object_id'] for entry in response.data], ['2'])
