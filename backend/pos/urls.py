from django.urls import path
from .views import sale_list_create, sale_detail, sale_validate

urlpatterns = [
    path('pos/sales/', sale_list_create, name='sale-list-create'),
    path('pos/sales/validate/', sale_validate, name='sale-validate'),
    path('pos/sales/<uuid:pk>/', sale_detail, name='sale-detail'),
]
