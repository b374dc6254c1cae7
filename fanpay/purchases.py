"""
Fanpay Wallet Purchases

Unlocking gated content with a user's internal wallet balance instead of an
on-chain payment. The debit, the access grant and the creator's earnings
credit commit together or not at all.
"""

import logging

from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.db.models import F

from .exceptions import ContentNotPurchasable, InsufficientBalance, MissingFields, UnknownParty
from .models import AccessGrant, Balance, Content
from .pricing import usd_cents_to_lamports
from .reconciler import credit_balance

logger = logging.getLogger(__name__)


def has_access(user_id, content):
    """Return True if ``user_id`` may view ``content``."""
    if not content.is_gated:
        return True
    if not user_id:
        return False
    if content.creator.user_id == user_id:
        return True
    return AccessGrant.objects.filter(buyer_id=user_id, content=content).exists()


def buy_with_wallet(user_id, content_id):
    """
    Buy gated content with wallet lamports.

    Already-unlocked content returns the existing grant without charging.

    Returns:
        tuple: (AccessGrant, created flag)

    Raises:
        MissingFields, UnknownParty, ContentNotPurchasable,
        InsufficientBalance, PricingUnavailable
    """
    if not user_id or not content_id:
        raise MissingFields("Missing userId or mediaId")
    User = get_user_model()
    try:
        known = User.objects.filter(pk=user_id).exists()
    except (ValueError, TypeError):
        known = False
    if not known:
        raise UnknownParty("User not found.")
    try:
        content = Content.objects.select_related('creator').get(pk=content_id)
    except (Content.DoesNotExist, ValueError, TypeError):
        raise ContentNotPurchasable("Content not found.")
    if not content.is_purchasable() or not content.creator.can_receive_payments:
        raise ContentNotPurchasable("Media not purchasable")

    existing = AccessGrant.objects.filter(buyer_id=user_id, content=content).first()
    if existing:
        return existing, False

    price_lamports = usd_cents_to_lamports(content.price_usd_cents)

    try:
        with transaction.atomic():
            debited = Balance.objects.filter(user_id=user_id, lamports__gte=price_lamports).update(
                lamports=F('lamports') - price_lamports,
            )
            if not debited:
                raise InsufficientBalance()
            grant = AccessGrant.objects.create(
                buyer_id=user_id,
                content=content,
                amount_lamports=price_lamports,
            )
            credit_balance(content.creator.user_id, usd_cents=content.price_usd_cents)
    except IntegrityError:
        # A concurrent purchase of the same content won; this one rolled back
        return AccessGrant.objects.get(buyer_id=user_id, content=content), False

    logger.info("User %s bought content %s from wallet for %s lamports", user_id, content.pk, price_lamports)
    return grant, True
