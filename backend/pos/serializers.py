from rest_framework import serializers
from .models import Sale, SaleItem


class SaleItemSerializer(serializers.ModelSerializer):
    line_total = serializers.DecimalField(max_digits=14, decimal_places=2, read_only=True)

    class Meta:
        model = SaleItem
        fields = ['id', 'product', 'product_name', 'product_sku', 'quantity', 'price', 'line_total', 'line_number']


class SaleSerializer(serializers.ModelSerializer):
    created_by_username = serializers.CharField(source='created_by.username', read_only=True, default=None)
    item_count = serializers.SerializerMethodField()

    class Meta:
        model = Sale
        fields = ['id', 'total', 'customer_name', 'payment_mode', 'created_by', 'created_by_username',
                  'item_count', 'created_at']

    def get_item_count(self, obj):
        """Number of lines; uses the annotation from list views when present"""
        annotated = getattr(obj, 'annotated_item_count', None)
        if annotated is not None:
            return annotated
        return obj.items.count()


class SaleDetailSerializer(SaleSerializer):
    items = SaleItemSerializer(many=True, read_only=True)

    class Meta(SaleSerializer.Meta):
        fields = SaleSerializer.Meta.fields + ['items']


class CheckoutSaleSerializer(serializers.Serializer):
    # Client-computed total; advisory only, the server recomputes it
    total = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    customer_name = serializers.CharField(required=False, allow_null=True, allow_blank=True, max_length=200, trim_whitespace=False)
    payment_mode = serializers.CharField(required=False, allow_null=True, allow_blank=True)


class CheckoutItemSerializer(serializers.Serializer):
    # Quantity and price are checked by the sale processor so that errors carry their checkout codes
    product_id = serializers.CharField()
    quantity = serializers.CharField()
    price = serializers.CharField()


class CheckoutSerializer(serializers.Serializer):
    sale = CheckoutSaleSerializer(required=False)
    items = CheckoutItemSerializer(many=True, allow_empty=True)
