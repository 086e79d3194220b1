from django.conf import settings
from rest_framework import serializers
from .models import Product


class ProductSerializer(serializers.ModelSerializer):
    is_low_stock = serializers.BooleanField(read_only=True)
    low_stock_threshold = serializers.IntegerField(min_value=1, required=False)
    quantity = serializers.IntegerField(min_value=0, required=False)
    price = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0)

    class Meta:
        model = Product
        fields = ['id', 'name', 'sku', 'price', 'quantity', 'low_stock_threshold', 'is_low_stock',
                  'image_url', 'created_at', 'updated_at']
        read_only_fields = ['id', 'created_at', 'updated_at']

    def validate_name(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError('Name cannot be blank')
        return value

    def validate_sku(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError('SKU cannot be blank')
        queryset = Product.objects.filter(sku__iexact=value)
        if self.instance is not None:
            queryset = queryset.exclude(pk=self.instance.pk)
        if queryset.exists():
            raise serializers.ValidationError('A product with this SKU already exists')
        return value

    def create(self, validated_data):
        validated_data.setdefault('low_stock_threshold', settings.DEFAULT_LOW_STOCK_THRESHOLD)
        return super().create(validated_data)


class ProductListSerializer(serializers.ModelSerializer):
    """Lightweight serializer for product lists and reports"""
    is_low_stock = serializers.BooleanField(read_only=True)

    class Meta:
        model = Product
        fields = ['id', 'name', 'sku', 'price', 'quantity', 'low_stock_threshold', 'is_low_stock', 'image_url']
