from django.contrib import admin
from .models import Sale, SaleItem


class SaleItemInline(admin.TabularInline):
    model = SaleItem
    extra = 0
    can_delete = False
    fields = ['line_number', 'product', 'product_name', 'product_sku', 'quantity', 'price']
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Sale)
class SaleAdmin(admin.ModelAdmin):
    """Sales are recorded by checkout only; the admin is read-only"""
    list_display = ['id', 'total', 'payment_mode', 'customer_name', 'created_by', 'created_at']
    list_filter = ['payment_mode', 'created_at']
    search_fields = ['id', 'customer_name', 'created_by__username']
    ordering = ['-created_at']
    readonly_fields = ['id', 'total', 'customer_name', 'payment_mode', 'created_by', 'created_at']
    inlines = [SaleItemInline]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
