"""
URL configuration for backend project.

All API endpoints are versioned under ``api/v1/``; each app contributes its own
``urls.py``.
"""
from django.contrib import admin
from django.urls import path, include

admin.site.site_header = "Sales & Inventory Admin Panel"
admin.site.site_title = "Sales & Inventory Admin Portal"
admin.site.index_title = "Welcome to the Sales & Inventory Admin Portal"

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/v1/', include('backend.core.urls')),
    path('api/v1/', include('backend.catalog.urls')),
    path('api/v1/', include('backend.inventory.urls')),
    path('api/v1/', include('backend.pos.urls')),
    path('api/v1/', include('backend.reports.urls')),
]
