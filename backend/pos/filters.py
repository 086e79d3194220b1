import django_filters
from .models import Sale


class SaleFilter(django_filters.FilterSet):
    """Sale history filtering; dates are YYYY-MM-DD and inclusive"""
    date_from = django_filters.DateFilter(field_name='created_at', lookup_expr='date__gte')
    date_to = django_filters.DateFilter(field_name='created_at', lookup_expr='date__lte')
    payment_mode = django_filters.CharFilter(field_name='payment_mode', lookup_expr='iexact')
    customer = django_filters.CharFilter(field_name='customer_name', lookup_expr='icontains')

    class Meta:
        model = Sale
        fields = ['date_from', 'date_to', 'payment_mode', 'customer']
