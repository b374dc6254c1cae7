"""
Fanpay Wallet Pool

Chooses platform addresses for new orders and deposits.

Selection is a best-effort heuristic: two concurrent checkouts can pick the
same clean address. Orders are matched by reference key, not by address, so
a shared destination never confirms the wrong order.
"""

import logging
import random

from .exceptions import LedgerError, NoWalletsConfigured
from .models import Deposit, PoolAddress

logger = logging.getLogger(__name__)


def select_destination(pool, client):
    """
    Pick a destination address for a new order.

    Shuffles the pool and returns the first address whose on-chain balance is
    exactly zero. Addresses whose balance cannot be read are skipped. When no
    clean address exists, a uniformly random pool address is returned.

    Args:
        pool: Sequence of candidate addresses
        client: SolanaClient used to probe balances

    Raises:
        NoWalletsConfigured: If the pool is empty
    """
    candidates = list(pool)
    if not candidates:
        raise NoWalletsConfigured()

    shuffled = candidates[:]
    random.shuffle(shuffled)
    for address in shuffled:
        try:
            balance = client.get_balance(address)
        except LedgerError as e:
            logger.debug("Skipping pool address %s: %s", address, e)
            continue
        if balance == 0:
            logger.info("Picked empty wallet %s", address)
            return address

    fallback = random.choice(candidates)
    logger.warning("No empty wallets found, falling back to %s", fallback)
    return fallback


def select_order_destination(client):
    return select_destination(PoolAddress.pool(PoolAddress.PURPOSE_ORDERS), client)


def select_deposit_address():
    """
    Pick an address from the deposit pool for a new deposit.

    Prefers addresses not already watched by another pending deposit so a
    single incoming transfer maps to a single deposit; otherwise any address.

    Raises:
        NoWalletsConfigured: If the deposit pool is empty
    """
    pool = PoolAddress.pool(PoolAddress.PURPOSE_DEPOSITS)
    if not pool:
        raise NoWalletsConfigured("No deposit wallets configured.")
    watched = set(
        Deposit.objects.filter(status=Deposit.PENDING, address__in=pool).values_list('address', flat=True)
    )
    free = [address for address in pool if address not in watched]
    return random.choice(free or pool)
