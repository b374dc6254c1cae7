"""
Fanpay Django Application Configuration

This module contains the Django application configuration for the Fanpay app.
"""

from django.apps import AppConfig


class FanpayConfig(AppConfig):
    """
    Configuration class for the Fanpay Django application.

    Attributes:
        default_auto_field: Specifies BigAutoField for auto-generated primary keys
        name: The Python module name for this Django application
    """
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'fanpay'
    verbose_name = 'Fanpay payments'
