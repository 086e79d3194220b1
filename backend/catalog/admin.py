from django.contrib import admin
from .models import Product


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ['name', 'sku', 'price', 'quantity', 'low_stock_threshold', 'is_low_stock', 'updated_at']
    search_fields = ['name', 'sku']
    ordering = ['name']
    readonly_fields = ['id', 'created_at', 'updated_at']

    @admin.display(boolean=True, description='Low stock')
    def is_low_stock(self, obj):
        return obj.is_low_stock
