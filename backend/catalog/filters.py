import django_filters
from django.db.models import F, Q
from .models import Product


class ProductFilter(django_filters.FilterSet):
    """Product list filtering used by the inventory and POS screens"""
    search = django_filters.CharFilter(method='filter_search')
    low_stock = django_filters.BooleanFilter(method='filter_low_stock')
    in_stock = django_filters.BooleanFilter(method='filter_in_stock')
    min_quantity = django_filters.NumberFilter(field_name='quantity', lookup_expr='gte')
    max_quantity = django_filters.NumberFilter(field_name='quantity', lookup_expr='lte')
    min_price = django_filters.NumberFilter(field_name='price', lookup_expr='gte')
    max_price = django_filters.NumberFilter(field_name='price', lookup_expr='lte')
    ordering = django_filters.OrderingFilter(
        fields=(
            ('name', 'name'),
            ('sku', 'sku'),
            ('price', 'price'),
            ('quantity', 'quantity'),
            ('created_at', 'created_at'),
        )
    )

    class Meta:
        model = Product
        fields = ['search', 'low_stock', 'in_stock', 'min_quantity', 'max_quantity', 'min_price', 'max_price']

    def filter_search(self, queryset, name, value):
        value = value.strip()
        if not value:
            return queryset
        return queryset.filter(Q(name__icontains=value) | Q(sku__icontains=value))

    def filter_low_stock(self, queryset, name, value):
        if value is None:
            return queryset
        low = Q(quantity__lte=F('low_stock_threshold'))
        return queryset.filter(low) if value else queryset.exclude(low)

    def filter_in_stock(self, queryset, name, value):
        if value is None:
            return queryset
        return queryset.filter(quantity__gt=0) if value else queryset.filter(quantity=0)
