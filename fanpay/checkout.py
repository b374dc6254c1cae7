"""
Fanpay Checkout

Creates payment orders. Each order gets:
- A lamport amount converted from USD once and locked in the order
- A destination address from the order wallet pool
- A fresh base58 reference key the payer's wallet attaches to its transaction

and is returned with a Solana Pay style payment URI for the buyer's wallet.
"""

import logging
import secrets
from urllib.parse import quote, urlencode

import base58
from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import DataError, IntegrityError, transaction

from .exceptions import (
    ContentNotPurchasable,
    InvalidAmount,
    MissingFields,
    ReferenceCollision,
    UnknownParty,
    UnsupportedCurrency,
)
from .models import Content, Creator, Order
from .pricing import MAX_USD_CENTS, lamports_to_sol, usd_cents_to_lamports
from .solana import get_client
from .wallets import select_order_destination

logger = logging.getLogger(__name__)

REFERENCE_ATTEMPTS = 5


def generate_reference():
    """Return a random 32-byte key in base58, shaped like a Solana address."""
    return base58.b58encode(secrets.token_bytes(32)).decode('ascii')


def build_payment_url(order, label=None):
    """
    Build the payment URI a wallet scans to pay ``order``.

    Format: solana:<destination>?amount=<SOL>&reference=<key>&label=..&message=..
    """
    label = label or settings.FANPAY_PAYMENT_LABEL
    params = [
        ('amount', lamports_to_sol(order.amount_lamports)),
        ('reference', order.reference),
        ('label', label),
        ('message', f"{order.kind} • {order.creator.handle}"),
    ]
    return f"solana:{order.destination}?{urlencode(params, quote_via=quote)}"


def payment_request(order):
    """Describe what the payer must send for ``order``."""
    return {
        'orderId': order.id,
        'reference': order.reference,
        'destination': order.destination,
        'amountLamports': str(order.amount_lamports),
        'amountSol': lamports_to_sol(order.amount_lamports),
        'amountUsdCents': order.amount_usd_cents,
        'currency': order.currency,
        'solanaPayUrl': build_payment_url(order),
    }


def _is_positive_cents(value):
    return isinstance(value, int) and not isinstance(value, bool) and 0 < value <= MAX_USD_CENTS


def _resolve_content(creator, content_id):
    try:
        content = Content.objects.get(pk=content_id)
    except (Content.DoesNotExist, ValueError, TypeError):
        raise ContentNotPurchasable("Content not found.")
    if content.creator_id != creator.pk or not content.is_purchasable():
        raise ContentNotPurchasable()
    return content


def create_order(buyer_id, creator_id, kind=Order.KIND_PPV, amount_usd_cents=None,
                 content_id=None, currency='SOL', client=None):
    """
    Create a PENDING order and its payment request.

    Validation runs in order: required fields, currency allow-list, positive
    amount, then content purchasability. No order row is written unless every
    check passes.

    Args:
        buyer_id: ID of the paying user
        creator_id: ID of the creator being paid
        kind: Order kind (PPV, TIP or SUBSCRIPTION)
        amount_usd_cents: Requested amount in cents; ignored for content orders
        content_id: Gated content to unlock, optional
        currency: Settlement currency
        client: SolanaClient used for pool probing

    Returns:
        tuple: (Order, payment request dict)

    Raises:
        CheckoutError: Any validation, pricing or wallet pool failure
    """
    if not buyer_id or not creator_id or (amount_usd_cents is None and content_id is None):
        raise MissingFields()
    currency = (currency or 'SOL').upper()
    if currency not in settings.FANPAY_SUPPORTED_CURRENCIES:
        raise UnsupportedCurrency(f"Unsupported currency: {currency}")
    if amount_usd_cents is not None and not _is_positive_cents(amount_usd_cents):
        raise InvalidAmount()
    kind = (kind or Order.KIND_PPV).upper()
    if kind not in dict(Order.KIND_CHOICES):
        raise MissingFields(f"Unknown order kind: {kind}")

    User = get_user_model()
    try:
        buyer = User.objects.get(pk=buyer_id)
        creator = Creator.objects.select_related('user').get(pk=creator_id)
    except (User.DoesNotExist, Creator.DoesNotExist, ValueError, TypeError):
        raise UnknownParty()
    if not creator.can_receive_payments:
        raise UnknownParty("This creator cannot receive payments.")

    content = None
    if content_id is not None:
        content = _resolve_content(creator, content_id)
        # The configured price always wins over a client-supplied amount
        amount_usd_cents = content.price_usd_cents
    amount_lamports = usd_cents_to_lamports(amount_usd_cents)

    client = client or get_client()
    destination = select_order_destination(client)

    for _ in range(REFERENCE_ATTEMPTS):
        reference = generate_reference()
        if Order.objects.filter(reference=reference).exists():
            logger.error("Reference collision on %s, regenerating", reference)
            continue
        try:
            with transaction.atomic():
                order = Order.objects.create(
                    reference=reference,
                    buyer=buyer,
                    creator=creator,
                    content=content,
                    kind=kind,
                    currency=currency,
                    amount_usd_cents=amount_usd_cents,
                    amount_lamports=amount_lamports,
                    destination=destination,
                    status=Order.PENDING,
                )
        except IntegrityError:
            logger.error("Reference collision on insert of %s, regenerating", reference)
            continue
        except (DataError, OverflowError):
            logger.warning("Order amount out of range: %s cents, %s lamports", amount_usd_cents, amount_lamports)
            raise InvalidAmount("Amount is too large.")
        logger.info(
            "Created order %s (%s) for creator %s: %s lamports to %s",
            order.reference, order.kind, creator.handle, amount_lamports, destination,
        )
        return order, payment_request(order)

    raise ReferenceCollision()
