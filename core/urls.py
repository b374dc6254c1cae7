"""
Fanpay Project URL Configuration

Main URL configuration for the Fanpay Django project. This is the root
URL dispatcher that routes requests to the appropriate application URLs.

URL Structure:
- /admin/ - Django administrative interface (orders, deposits, wallet pool)
- /api/ - Payment API handled by the fanpay application

For more information on Django URL configuration:
https://docs.djangoproject.com/en/5.2/topics/http/urls/
"""

from django.contrib import admin
from django.urls import path, include

urlpatterns = [
    # Django admin interface for site administration
    path('admin/', admin.site.urls),

    # Payment API is handled by the fanpay app
    path('api/', include('fanpay.urls')),
]
