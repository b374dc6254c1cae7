"""
Fanpay URL Configuration

Maps the payment API paths to their views. Mounted under /api/ by the
project URL configuration.
"""

from django.urls import path

from . import views

urlpatterns = [
    # Orders paid on chain
    path('checkout/', views.checkout, name='checkout'),
    path('confirm/', views.confirm, name='confirm'),
    path('pricing/sol/', views.sol_price, name='sol_price'),

    # Internal wallet
    path('wallet/me/', views.wallet_me, name='wallet_me'),
    path('wallet/deposit/start/', views.deposit_start, name='deposit_start'),
    path('wallet/sync/', views.wallet_sync, name='wallet_sync'),

    # Gated media
    path('media/buy-with-wallet/', views.media_buy_with_wallet, name='media_buy_with_wallet'),
    path('media/access/', views.media_access, name='media_access'),
]
