import logging
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from django.db.models import Sum, Count, Avg, F, DecimalField, ExpressionWrapper
from django.db.models.functions import TruncDate
from django.utils import timezone
from datetime import datetime, timedelta
from decimal import Decimal

from backend.catalog.models import Product
from backend.core.permissions import IsManagerOrAdmin
from backend.pos.models import Sale, SaleItem
from backend.pos.serializers import SaleSerializer

logger = logging.getLogger('backend.reports')


def _date_range(request, default_days=30):
    """Parse date_from/date_to (YYYY-MM-DD); defaults to the last ``default_days`` days"""
    date_from = request.query_params.get('date_from', None)
    date_to = request.query_params.get('date_to', None)

    if not date_from:
        date_from = (timezone.now() - timedelta(days=default_days)).date()
    else:
        date_from = datetime.strptime(date_from, '%Y-%m-%d').date()

    if not date_to:
        date_to = timezone.now().date()
    else:
        date_to = datetime.strptime(date_to, '%Y-%m-%d').date()

    return date_from, date_to


def _inventory_value():
    value = Product.objects.aggregate(
        total=Sum(ExpressionWrapper(F('price') * F('quantity'), output_field=DecimalField(max_digits=14, decimal_places=2)))
    )['total']
    return value or Decimal('0.00')


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def dashboard(request):
    """Home screen figures: catalog size, low stock, sales totals, recent sales"""
    sales_totals = Sale.objects.aggregate(
        revenue=Sum('total', output_field=DecimalField()),
        count=Count('id'),
    )
    today = timezone.localdate()
    today_totals = Sale.objects.filter(created_at__date=today).aggregate(
        revenue=Sum('total', output_field=DecimalField()),
        count=Count('id'),
    )
    recent_sales = Sale.objects.select_related('created_by').annotate(annotated_item_count=Count('items')).order_by('-created_at')[:5]

    return Response({
        'products': {
            'total': Product.objects.count(),
            'low_stock': Product.objects.filter(quantity__lte=F('low_stock_threshold')).count(),
            'out_of_stock': Product.objects.filter(quantity=0).count(),
        },
        'sales': {
            'count': sales_totals['count'],
            'revenue': float(sales_totals['revenue'] or Decimal('0.00')),
            'today_count': today_totals['count'],
            'today_revenue': float(today_totals['revenue'] or Decimal('0.00')),
        },
        'recent_sales': SaleSerializer(recent_sales, many=True).data,
    })


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsManagerOrAdmin])
def analytics(request):
    """Sales analytics for a date range"""
    try:
        date_from, date_to = _date_range(request)
    except ValueError:
        return Response({'error': 'Dates must use the YYYY-MM-DD format'}, status=status.HTTP_400_BAD_REQUEST)

    try:
        limit = int(request.query_params.get('limit', 5))
    except ValueError:
        return Response({'error': 'limit must be an integer'}, status=status.HTTP_400_BAD_REQUEST)

    sales = Sale.objects.filter(created_at__date__gte=date_from, created_at__date__lte=date_to)

    totals = sales.aggregate(
        revenue=Sum('total', output_field=DecimalField()),
        count=Count('id'),
        average=Avg('total', output_field=DecimalField()),
    )

    sales_by_date = sales.annotate(
        date=TruncDate('created_at')
    ).values('date').annotate(
        total=Sum('total', output_field=DecimalField()),
        count=Count('id'),
    ).order_by('date')

    payment_modes = sales.values('payment_mode').annotate(
        total=Sum('total', output_field=DecimalField()),
        count=Count('id'),
    ).order_by('payment_mode')

    line_total = ExpressionWrapper(F('price') * F('quantity'), output_field=DecimalField(max_digits=14, decimal_places=2))
    top_products = SaleItem.objects.filter(sale__in=sales).values(
        'product_id', 'product_name', 'product_sku'
    ).annotate(
        total_quantity=Sum('quantity'),
        total_revenue=Sum(line_total),
        sale_count=Count('sale', distinct=True),
    ).order_by('-total_revenue', 'product_name')[:limit]

    logger.debug(f"Analytics computed for {date_from} - {date_to}: {totals['count']} sales")

    return Response({
        'period': {
            'from': date_from.isoformat(),
            'to': date_to.isoformat(),
        },
        'summary': {
            'total_revenue': float(totals['revenue'] or Decimal('0.00')),
            'total_sales': totals['count'],
            'average_sale': float(totals['average'] or Decimal('0.00')),
            'inventory_value': float(_inventory_value()),
            'low_stock_products': Product.objects.filter(quantity__lte=F('low_stock_threshold')).count(),
        },
        'sales_by_date': [
            {'date': row['date'].isoformat(), 'total': float(row['total'] or 0), 'count': row['count']}
            for row in sales_by_date
        ],
        'payment_modes': [
            {'payment_mode': row['payment_mode'], 'total': float(row['total'] or 0), 'count': row['count']}
            for row in payment_modes
        ],
        'top_products': [
            {
                'product_id': str(row['product_id']),
                'product_name': row['product_name'],
                'product_sku': row['product_sku'],
                'total_quantity': row['total_quantity'],
                'total_revenue': float(row['total_revenue'] or 0),
                'sale_count': row['sale_count'],
            }
            for row in top_products
        ],
    })
