import logging
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from django.core.paginator import Paginator
from django.db.models import Count
from django.shortcuts import get_object_or_404
from backend.catalog.serializers import ProductListSerializer
from backend.core.exceptions import SalesError
from backend.core.permissions import CanCheckout
from backend.core.utils import create_audit_log, sales_error_response
from .filters import SaleFilter
from .models import Sale
from .serializers import CheckoutSerializer, SaleSerializer, SaleDetailSerializer
from .services import SaleTransactionProcessor

logger = logging.getLogger('backend.pos')


def _checkout_payload(request):
    """Validate the request shape; returns (sale, items) or raises a DRF ValidationError"""
    serializer = CheckoutSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    return serializer.validated_data.get('sale') or {}, serializer.validated_data['items']


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, CanCheckout])
def sale_list_create(request):
    """List sales (newest first) or check out a cart"""
    if request.method == 'GET':
        queryset = Sale.objects.select_related('created_by').annotate(annotated_item_count=Count('items'))
        filterset = SaleFilter(request.query_params, queryset=queryset)
        if not filterset.is_valid():
            return Response(filterset.errors, status=status.HTTP_400_BAD_REQUEST)

        queryset = filterset.qs.order_by('-created_at')

        try:
            page = int(request.query_params.get('page', 1))
            limit = min(int(request.query_params.get('limit', 50)), 200)
        except ValueError:
            return Response({'error': 'page and limit must be integers'}, status=status.HTTP_400_BAD_REQUEST)

        paginator = Paginator(queryset, max(limit, 1))
        page_obj = paginator.get_page(page)

        serializer = SaleSerializer(page_obj, many=True)
        return Response({
            'results': serializer.data,
            'count': paginator.count,
            'next': page_obj.next_page_number() if page_obj.has_next() else None,
            'previous': page_obj.previous_page_number() if page_obj.has_previous() else None,
            'page': page_obj.number,
            'page_size': paginator.per_page,
            'total_pages': paginator.num_pages,
        })

    sale_data, items = _checkout_payload(request)
    processor = SaleTransactionProcessor()
    try:
        sale = processor.checkout(sale_data, items, user=request.user)
    except SalesError as exc:
        if exc.details.get('partial'):
            create_audit_log(
                request=request,
                action='sale_failed',
                model_name='Sale',
                object_id=exc.details['sale_id'],
                object_reference=exc.details['sale_id'],
                changes={'state': exc.state, 'error': exc.code, 'message': exc.message},
            )
        return sales_error_response(exc)

    create_audit_log(
        request=request,
        action='sale_checkout',
        model_name='Sale',
        object_id=str(sale.pk),
        object_name=sale.customer_name,
        object_reference=str(sale.pk),
        changes={
            'total': str(sale.total),
            'payment_mode': sale.payment_mode,
            'items': [
                {'product': str(item.product_id), 'quantity': item.quantity, 'price': str(item.price)}
                for item in sale.items.all()
            ],
        },
    )
    return Response(SaleDetailSerializer(sale).data, status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def sale_detail(request, pk):
    """Retrieve a sale with its line items"""
    sale = get_object_or_404(Sale.objects.select_related('created_by').prefetch_related('items'), pk=pk)
    return Response(SaleDetailSerializer(sale).data)


@api_view(['POST'])
@permission_classes([IsAuthenticated, CanCheckout])
def sale_validate(request):
    """Check a cart against current stock without recording anything"""
    sale_data, items = _checkout_payload(request)
    try:
        cart = SaleTransactionProcessor().validate(sale_data, items)
    except SalesError as exc:
        return sales_error_response(exc)

    return Response({
        'valid': True,
        'total': str(cart.total),
        'payment_mode': cart.payment_mode,
        'customer_name': cart.customer_name,
        'lines': [
            {
                'product': ProductListSerializer(line.product).data,
                'quantity': line.quantity,
                'price': str(line.price),
                'line_total': str(line.line_total),
            }
            for line in cart.lines
        ],
    })
