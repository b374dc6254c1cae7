"""
Fanpay Settlement Reconciler

Turns an observed on-chain payment into a confirmed order, exactly once.

check_status(reference) is safe to call repeatedly and concurrently from any
number of processes:
- A confirmed order is reported as confirmed without touching the ledger.
- Anything short of a validated transfer (nothing found yet, wrong amount,
  wrong recipient, ledger unreachable) is reported as pending.
- The PENDING -> CONFIRMED transition is a conditional UPDATE; only the
  caller whose UPDATE matched a PENDING row applies the access grant and the
  creator credit, in the same database transaction.
"""

import logging

from django.conf import settings
from django.db import DatabaseError, transaction
from django.db.models import F
from django.utils import timezone

from .exceptions import LedgerError, TransferInvalid
from .models import AccessGrant, Balance, Order
from .solana import get_client

logger = logging.getLogger(__name__)

BAD_REQUEST = 'bad_request'
NOT_FOUND = 'not_found'
PENDING = 'pending'
CONFIRMED = 'confirmed'


class StatusResult:
    """Outcome of a status check: one of the status constants plus the signature once confirmed."""

    def __init__(self, status, signature=None, order=None):
        self.status = status
        self.signature = signature
        self.order = order

    def as_dict(self):
        data = {'status': self.status}
        if self.signature:
            data['signature'] = self.signature
        return data


def credit_balance(user_id, usd_cents=0, lamports=0):
    """
    Add to a user's balance with a database-side increment.

    Must run inside the transaction that justifies the credit.
    """
    Balance.objects.get_or_create(user_id=user_id)
    Balance.objects.filter(user_id=user_id).update(
        usd_cents=F('usd_cents') + usd_cents,
        lamports=F('lamports') + lamports,
    )


def apply_confirmation(order, signature):
    """
    Confirm ``order`` with ``signature`` and apply its effects atomically.

    Returns:
        bool: True if this call performed the transition, False if the order
        was already confirmed by someone else
    """
    with transaction.atomic():
        updated = Order.objects.filter(pk=order.pk, status=Order.PENDING).update(
            status=Order.CONFIRMED,
            signature=signature,
            confirmed_at=timezone.now(),
        )
        if not updated:
            return False
        if order.content_id:
            AccessGrant.objects.get_or_create(
                buyer_id=order.buyer_id,
                content_id=order.content_id,
                defaults={'order': order, 'amount_lamports': order.amount_lamports},
            )
        credit_balance(order.creator.user_id, usd_cents=order.amount_usd_cents)
    return True


def find_valid_payment(order, client):
    """
    Return the signature of the first transaction referencing ``order`` that
    pays its destination exactly its locked amount, or None.

    Raises:
        LedgerError: If the ledger cannot be queried
    """
    candidates = client.find_transactions_by_reference(
        order.reference, limit=settings.FANPAY_REFERENCE_SCAN_LIMIT
    )
    for candidate in candidates:
        if not candidate.succeeded:
            continue
        try:
            client.validate_transfer(
                candidate.signature,
                recipient=order.destination,
                amount=order.amount_lamports,
                reference=order.reference,
            )
        except TransferInvalid as e:
            logger.warning("Rejected candidate for order %s: %s", order.reference, e)
            continue
        return candidate.signature
    return None


def check_status(reference, client=None):
    """
    Report the payment status of the order identified by ``reference``,
    confirming it if a valid payment is found on chain.

    Returns:
        StatusResult with status bad_request, not_found, pending or confirmed
    """
    if not reference:
        return StatusResult(BAD_REQUEST)

    try:
        order = Order.objects.select_related('creator').get(reference=reference)
    except Order.DoesNotExist:
        return StatusResult(NOT_FOUND)
    if order.is_confirmed:
        return StatusResult(CONFIRMED, order.signature, order)

    client = client or get_client()
    try:
        signature = find_valid_payment(order, client)
    except LedgerError as e:
        logger.warning("Ledger unavailable while checking %s: %s", reference, e)
        return StatusResult(PENDING, order=order)
    if signature is None:
        return StatusResult(PENDING, order=order)

    try:
        won = apply_confirmation(order, signature)
    except DatabaseError:
        logger.exception("Could not confirm order %s, will retry on next poll", reference)
        return StatusResult(PENDING, order=order)

    order.refresh_from_db()
    if won:
        logger.info("Confirmed order %s with %s", reference, signature)
    if order.is_confirmed:
        return StatusResult(CONFIRMED, order.signature, order)
    return StatusResult(PENDING, order=order)
