"""
Fanpay Deposits

Open-ended wallet top-ups. A user asks for a deposit address, sends any
amount of SOL to it, and a periodic sweep credits their wallet balance with
the balance increase it observes on that address.

The sweep never trusts a claimed amount: the credit is the post minus pre
balance of the deposit address inside the transaction itself.
"""

import logging
from datetime import datetime, timedelta, timezone as dt_timezone

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.utils import timezone

from .exceptions import LedgerError, MissingFields, UnknownParty
from .models import Balance, Deposit
from .reconciler import credit_balance
from .solana import get_client
from .validators import is_valid_sol_address
from .wallets import select_deposit_address

logger = logging.getLogger(__name__)

# Ledger block times and our clock can disagree by a little
BLOCK_TIME_SKEW = timedelta(minutes=2)


def start_deposit(user_id):
    """
    Issue a deposit address to ``user_id`` and record a PENDING deposit.

    Raises:
        MissingFields: If no user is given
        UnknownParty: If the user does not exist
        NoWalletsConfigured: If the deposit pool is empty
    """
    if not user_id:
        raise MissingFields("Missing userId")
    User = get_user_model()
    try:
        user = User.objects.get(pk=user_id)
    except (User.DoesNotExist, ValueError, TypeError):
        raise UnknownParty("User not found.")
    address = select_deposit_address()
    deposit = Deposit.objects.create(user=user, address=address, amount_lamports=0, status=Deposit.PENDING)
    logger.info("Issued deposit %s at %s to user %s", deposit.pk, address, user.pk)
    return deposit


def wallet_summary(user_id, limit=10):
    """
    Return the user's wallet balance and their latest credited deposits.

    Creates the balance row on first access.
    """
    if not user_id:
        raise MissingFields("Missing userId")
    User = get_user_model()
    try:
        known = User.objects.filter(pk=user_id).exists()
    except (ValueError, TypeError):
        known = False
    if not known:
        raise UnknownParty("User not found.")
    balance, _ = Balance.objects.get_or_create(user_id=user_id)
    deposits = Deposit.objects.filter(user_id=user_id, amount_lamports__gt=0).order_by('-created_at')[:limit]
    return {
        'balanceLamports': str(balance.lamports),
        'earningsUsdCents': balance.usd_cents,
        'deposits': [d.as_dict() for d in deposits],
    }


def _block_datetime(block_time):
    if block_time is None:
        return None
    return datetime.fromtimestamp(block_time, tz=dt_timezone.utc)


def signature_claimed(deposit, signature):
    """Return True if another deposit on the same address already holds ``signature``."""
    return Deposit.objects.filter(
        address=deposit.address, tx_signature=signature,
    ).exclude(pk=deposit.pk).exists()


def process_deposit(deposit, client):
    """
    Credit one pending deposit from the latest activity on its address.
    A deposit whose stored address is malformed is cancelled for good.

    Returns:
        bool: True if the deposit was credited by this call

    Raises:
        LedgerError: If the ledger cannot be queried
    """
    if not is_valid_sol_address(deposit.address):
        logger.warning("Cancelling deposit %s: invalid Solana address %s", deposit.pk, deposit.address)
        Deposit.objects.filter(pk=deposit.pk, status=Deposit.PENDING).update(status=Deposit.CANCELLED)
        return False

    activity = client.get_recent_activity(deposit.address, limit=settings.FANPAY_DEPOSIT_ACTIVITY_LIMIT)
    if not activity:
        return False

    latest = activity[0]
    if deposit.tx_signature and latest.signature == deposit.tx_signature:
        return False
    if not latest.succeeded:
        return False
    block_at = _block_datetime(latest.block_time)
    if block_at is not None and block_at < deposit.created_at - BLOCK_TIME_SKEW:
        # Activity from before this deposit was issued belongs to someone else
        return False
    if signature_claimed(deposit, latest.signature):
        return False

    credited = latest.credited_lamports(deposit.address)
    if credited <= 0:
        return False

    try:
        with transaction.atomic():
            updated = Deposit.objects.filter(pk=deposit.pk, status=Deposit.PENDING).update(
                amount_lamports=credited,
                status=Deposit.CONFIRMED,
                tx_signature=latest.signature,
                confirmed_at=block_at or timezone.now(),
            )
            if not updated:
                return False
            credit_balance(deposit.user_id, lamports=credited)
    except IntegrityError:
        # Another deposit on this address took the signature first; nothing was credited
        logger.warning("Signature %s already credited on %s, skipping deposit %s",
                       latest.signature, deposit.address, deposit.pk)
        return False

    logger.info("Credited deposit %s with %s lamports (%s)", deposit.pk, credited, latest.signature)
    return True


def sweep_deposits(client=None):
    """
    Sweep every pending deposit once.

    A failure on one deposit is logged and does not stop the sweep.

    Returns:
        int: Number of deposits credited in this sweep
    """
    client = client or get_client()
    pending = list(Deposit.objects.filter(status=Deposit.PENDING).order_by('created_at', 'pk'))
    processed = 0
    for deposit in pending:
        try:
            if process_deposit(deposit, client):
                processed += 1
        except LedgerError as e:
            logger.warning("Ledger unavailable for deposit %s: %s", deposit.pk, e)
        except Exception:
            logger.exception("Error processing deposit %s", deposit.pk)
    logger.info("Deposit sweep finished: %s of %s pending deposits credited", processed, len(pending))
    return processed
