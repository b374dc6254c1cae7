"""
Fanpay Django Admin Configuration

This module configures the Django admin interface for Fanpay models.

Key features:
- The wallet pool is managed here by operators
- Confirmed orders and deposits are read-only audit records
- Balances can be inspected but never edited by hand
"""

from django.contrib import admin

from .models import AccessGrant, Balance, Content, Creator, Deposit, Order, PoolAddress


class CreatorAdmin(admin.ModelAdmin):
    list_display = ('handle', 'display_name', 'user', 'suspended', 'deactivated')
    search_fields = ('handle', 'display_name')


class ContentAdmin(admin.ModelAdmin):
    list_display = ('title', 'creator', 'is_gated', 'price_usd_cents')


class PoolAddressAdmin(admin.ModelAdmin):
    list_display = ('address', 'purpose', 'active', 'created_at')
    list_filter = ('purpose', 'active')


class OrderAdmin(admin.ModelAdmin):
    """
    Admin interface configuration for Order model.

    Locked amounts, reference and destination are fixed at checkout. Once an
    order is confirmed its status and signature are read-only as well.
    """
    list_display = ('reference', 'kind', 'buyer', 'creator', 'amount_usd_cents', 'amount_lamports', 'status')
    list_filter = ('status', 'kind')
    search_fields = ('reference', 'signature', 'destination')
    readonly_fields = ('reference', 'amount_usd_cents', 'amount_lamports', 'destination', 'created_at', 'confirmed_at')

    def get_readonly_fields(self, request, obj=None):
        """Make status and signature read-only on confirmed orders."""
        if obj and obj.is_confirmed:
            return self.readonly_fields + ('status', 'signature')
        return self.readonly_fields


class DepositAdmin(admin.ModelAdmin):
    list_display = ('id', 'user', 'address', 'amount_lamports', 'status', 'created_at')
    list_filter = ('status',)
    readonly_fields = ('amount_lamports', 'tx_signature', 'confirmed_at')


class BalanceAdmin(admin.ModelAdmin):
    list_display = ('user', 'usd_cents', 'lamports', 'updated_at')
    readonly_fields = ('usd_cents', 'lamports')


class AccessGrantAdmin(admin.ModelAdmin):
    list_display = ('buyer', 'content', 'order', 'amount_lamports', 'created_at')


# Register models with their respective admin classes
admin.site.register(Creator, CreatorAdmin)
admin.site.register(Content, ContentAdmin)
admin.site.register(PoolAddress, PoolAddressAdmin)
admin.site.register(Order, OrderAdmin)
admin.site.register(Deposit, DepositAdmin)
admin.site.register(Balance, BalanceAdmin)
admin.site.register(AccessGrant, AccessGrantAdmin)
