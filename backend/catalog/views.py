import logging
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from django.db.models import ProtectedError
from django.shortcuts import get_object_or_404
from backend.core.permissions import ReadOnlyOrAdmin
from backend.core.utils import create_audit_log
from .filters import ProductFilter
from .models import Product
from .serializers import ProductSerializer

logger = logging.getLogger('backend.catalog')

TRACKED_FIELDS = ['name', 'sku', 'price', 'quantity', 'low_stock_threshold', 'image_url']


def _snapshot(product):
    return {field: str(getattr(product, field)) for field in TRACKED_FIELDS}


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, ReadOnlyOrAdmin])
def product_list_create(request):
    """List all products or create a new product"""
    if request.method == 'GET':
        filterset = ProductFilter(request.query_params, queryset=Product.objects.all())
        if not filterset.is_valid():
            return Response(filterset.errors, status=status.HTTP_400_BAD_REQUEST)
        serializer = ProductSerializer(filterset.qs, many=True)
        return Response(serializer.data)
    else:
        serializer = ProductSerializer(data=request.data)
        if serializer.is_valid():
            product = serializer.save()
            create_audit_log(
                request=request,
                action='create',
                model_name='Product',
                object_id=str(product.id),
                object_name=product.name,
                object_reference=product.sku,
                changes=_snapshot(product),
            )
            logger.info(f"Product created: {product.sku} (id={product.id}, quantity={product.quantity})")
            return Response(ProductSerializer(product).data, status=status.HTTP_201_CREATED)
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated, ReadOnlyOrAdmin])
def product_detail(request, pk):
    """Retrieve, update or delete a product"""
    product = get_object_or_404(Product, pk=pk)

    if request.method == 'GET':
        return Response(ProductSerializer(product).data)
    elif request.method in ('PUT', 'PATCH'):
        serializer = ProductSerializer(product, data=request.data, partial=request.method == 'PATCH')
        if serializer.is_valid():
            old_data = _snapshot(product)
            serializer.save()
            new_data = _snapshot(product)
            changes = {k: {'old': old_data[k], 'new': new_data[k]} for k in TRACKED_FIELDS if old_data[k] != new_data[k]}
            if changes:
                create_audit_log(
                    request=request,
                    action='update',
                    model_name='Product',
                    object_id=str(product.id),
                    object_name=product.name,
                    object_reference=product.sku,
                    changes=changes,
                )
            return Response(serializer.data)
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
    else:  # DELETE
        product_name = product.name
        product_sku = product.sku
        product_id = str(product.id)
        try:
            product.delete()
        except ProtectedError:
            return Response({
                'error': 'product_in_use',
                'message': f'{product_name} is referenced by recorded sales and cannot be deleted',
            }, status=status.HTTP_409_CONFLICT)
        create_audit_log(
            request=request,
            action='delete',
            model_name='Product',
            object_id=product_id,
            object_name=product_name,
            object_reference=product_sku,
            changes={'name': product_name, 'sku': product_sku},
        )
        return Response(status=status.HTTP_204_NO_CONTENT)
