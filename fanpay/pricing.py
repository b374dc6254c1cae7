"""
Fanpay Pricing

SOL/USD price oracle and USD to lamports conversion.

The quote is advisory: checkout converts it into a lamport amount once and
locks that amount into the order, so later steps never re-derive it.
Resolution order:
1. FANPAY_SOL_USD_PRICE static override (no network)
2. Fresh quote from the price feed, stored as last-known-good
3. Last-known-good quote from the cache
4. FANPAY_FALLBACK_SOL_USD
Otherwise PricingUnavailable is raised to the caller.
"""

import logging
from decimal import Decimal, InvalidOperation, ROUND_DOWN

import requests
from django.conf import settings
from django.core.cache import cache

from .exceptions import PricingUnavailable, InvalidAmount
from .solana import LAMPORTS_PER_SOL

logger = logging.getLogger(__name__)

# Column ranges of Order.amount_usd_cents and the lamport columns
MAX_USD_CENTS = 2_147_483_647
MAX_LAMPORTS = 9_223_372_036_854_775_807

LAST_KNOWN_GOOD_KEY = 'fanpay:sol_usd:last_known_good'
FRESH_KEY = 'fanpay:sol_usd:fresh'


def _as_price(value):
    try:
        price = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        return None
    if not price.is_finite() or price <= 0:
        return None
    return price


def fetch_sol_price_usd():
    """
    Fetch the current SOL to USD exchange rate from the price feed.

    Returns:
        Decimal: Current SOL price in USD, or None if the fetch fails

    Note:
        Has a 10-second timeout to prevent hanging requests.
        Failures are logged but don't raise exceptions.
    """
    try:
        response = requests.get(settings.FANPAY_PRICE_FEED_URL, timeout=10)
        response.raise_for_status()
        data = response.json()
        return _as_price(data.get("USD"))
    except (requests.RequestException, ValueError, AttributeError) as e:
        logger.warning("Error fetching SOL price: %s", e)
        return None


def get_sol_price_usd():
    """
    Return the SOL price in USD as a Decimal.

    Raises:
        PricingUnavailable: If no quote, cached quote or fallback exists
    """
    static = _as_price(settings.FANPAY_SOL_USD_PRICE) if settings.FANPAY_SOL_USD_PRICE else None
    if static:
        return static

    cached = cache.get(FRESH_KEY)
    if cached:
        return Decimal(cached)

    price = fetch_sol_price_usd()
    if price:
        cache.set(FRESH_KEY, str(price), settings.FANPAY_PRICE_CACHE_SECONDS)
        cache.set(LAST_KNOWN_GOOD_KEY, str(price), None)
        return price

    last_known = cache.get(LAST_KNOWN_GOOD_KEY)
    if last_known:
        logger.warning("Price feed unavailable, using last known SOL price %s", last_known)
        return Decimal(last_known)

    fallback = _as_price(settings.FANPAY_FALLBACK_SOL_USD) if settings.FANPAY_FALLBACK_SOL_USD else None
    if fallback:
        logger.warning("Price feed unavailable, using configured fallback SOL price %s", fallback)
        return fallback

    raise PricingUnavailable()


def usd_cents_to_lamports(amount_usd_cents, price_usd=None):
    """
    Convert a USD cent amount to lamports at ``price_usd`` (USD per SOL).

    Rounds down to a whole lamport. The price is looked up when not given.

    Raises:
        InvalidAmount: If the amount is not positive, converts to zero lamports or
            exceeds the stored column ranges
        PricingUnavailable: If no price can be obtained
    """
    if isinstance(amount_usd_cents, bool) or not isinstance(amount_usd_cents, int) or amount_usd_cents <= 0:
        raise InvalidAmount()
    if amount_usd_cents > MAX_USD_CENTS:
        raise InvalidAmount("Amount is too large.")
    if price_usd is None:
        price_usd = get_sol_price_usd()
    lamports = (Decimal(amount_usd_cents) * LAMPORTS_PER_SOL / (Decimal(100) * Decimal(price_usd)))
    lamports = int(lamports.to_integral_value(rounding=ROUND_DOWN))
    if lamports <= 0:
        raise InvalidAmount("Amount is too small to settle in SOL.")
    if lamports > MAX_LAMPORTS:
        raise InvalidAmount("Amount is too large to settle in SOL.")
    return lamports


def lamports_to_sol(lamports):
    """Return ``lamports`` as a plain decimal SOL string, e.g. 1500000 -> '0.0015'."""
    sol = (Decimal(lamports) / LAMPORTS_PER_SOL).normalize()
    return format(sol, 'f')
