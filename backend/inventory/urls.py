from django.urls import path
from .views import low_stock_list

urlpatterns = [
    path('inventory/low-stock/', low_stock_list, name='inventory-low-stock'),
]
