from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from backend.catalog.serializers import ProductListSerializer
from .ledger import stock_ledger


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def low_stock_list(request):
    """Products at or below their low-stock threshold"""
    products = stock_ledger.low_stock_products()
    return Response({
        'count': products.count(),
        'results': ProductListSerializer(products, many=True).data,
    })
