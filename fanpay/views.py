"""
Fanpay Views

JSON API for the payment core:
- Checkout: create an order and its Solana payment request
- Confirm: poll an order's status by reference
- Pricing: current SOL/USD quote
- Wallet: balance and deposit history, deposit address issuance, deposit sweep
- Media: buy gated content with wallet funds, check access

Callers identify buyers and users by id in the request; session handling and
page rendering live outside this app.
"""

import json
import logging
import secrets

from django.conf import settings
from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from .checkout import create_order
from .deposits import start_deposit, sweep_deposits, wallet_summary
from .exceptions import CheckoutError
from .models import Balance, Content
from .pricing import get_sol_price_usd
from .purchases import buy_with_wallet, has_access
from .reconciler import BAD_REQUEST, NOT_FOUND, check_status

logger = logging.getLogger(__name__)

STATUS_CODES = {
    BAD_REQUEST: 400,
    NOT_FOUND: 404,
}


def _json_body(request):
    """Parse the request body as a JSON object; raises ValueError otherwise."""
    data = json.loads(request.body or b'{}')
    if not isinstance(data, dict):
        raise ValueError("JSON body must be an object")
    return data


def _as_int(value):
    """Accept ints and digit strings from clients; leave anything else for validation."""
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return value


def _error(exc):
    return JsonResponse(exc.as_dict(), status=exc.status)


@csrf_exempt
@require_http_methods(["POST"])
def checkout(request):
    """
    Create a PENDING order and return its payment request.

    Body:
        buyerId, creatorId: required
        kind: PPV, TIP or SUBSCRIPTION (default PPV)
        amountUsdCents: required unless contentId is given
        contentId: gated content to unlock; its price overrides amountUsdCents
        currency (or token): settlement currency, default SOL

    Returns:
        JsonResponse: orderId, reference, destination, locked amount and solanaPayUrl
    """
    try:
        data = _json_body(request)
    except ValueError:
        return JsonResponse({'error': 'invalid_json', 'message': 'Invalid JSON data'}, status=400)

    try:
        order, payment = create_order(
            buyer_id=_as_int(data.get('buyerId')),
            creator_id=_as_int(data.get('creatorId')),
            kind=data.get('kind'),
            amount_usd_cents=_as_int(data.get('amountUsdCents')),
            content_id=_as_int(data.get('contentId')),
            currency=data.get('currency') or data.get('token'),
        )
    except CheckoutError as e:
        logger.info("Checkout rejected: %s", e.code)
        return _error(e)
    return JsonResponse(payment)


@require_http_methods(["GET"])
def confirm(request):
    """
    Report an order's payment status.

    Query:
        reference: the order's reference key

    Returns:
        JsonResponse: {"status": bad_request|not_found|pending|confirmed, "signature"?}
    """
    result = check_status(request.GET.get('reference', '').strip())
    return JsonResponse(result.as_dict(), status=STATUS_CODES.get(result.status, 200))


@require_http_methods(["GET"])
def sol_price(request):
    try:
        price = get_sol_price_usd()
    except CheckoutError as e:
        return JsonResponse({'ok': False, 'error': e.message}, status=e.status)
    return JsonResponse({'ok': True, 'solUsd': float(price)})


@csrf_exempt
@require_http_methods(["POST"])
def wallet_me(request):
    """Return the user's wallet balance and recent credited deposits."""
    try:
        data = _json_body(request)
    except ValueError:
        return JsonResponse({'error': 'invalid_json', 'message': 'Invalid JSON data'}, status=400)
    try:
        return JsonResponse(wallet_summary(_as_int(data.get('userId'))))
    except CheckoutError as e:
        return _error(e)


@csrf_exempt
@require_http_methods(["POST"])
def deposit_start(request):
    """Assign a platform deposit address to the user."""
    try:
        data = _json_body(request)
    except ValueError:
        return JsonResponse({'error': 'invalid_json', 'message': 'Invalid JSON data'}, status=400)
    try:
        deposit = start_deposit(_as_int(data.get('userId')))
    except CheckoutError as e:
        return _error(e)
    return JsonResponse({'depositId': deposit.id, 'address': deposit.address})


@csrf_exempt
@require_http_methods(["POST"])
def wallet_sync(request):
    """
    Run one deposit sweep. Meant for a scheduler.

    When FANPAY_SWEEP_TOKEN is set, the X-Sweep-Token header must match it.
    """
    expected = settings.FANPAY_SWEEP_TOKEN
    if expected and not secrets.compare_digest(request.headers.get('X-Sweep-Token', ''), expected):
        return JsonResponse({'error': 'forbidden'}, status=403)
    processed = sweep_deposits()
    return JsonResponse({'ok': True, 'processed': processed})


@csrf_exempt
@require_http_methods(["POST"])
def media_buy_with_wallet(request):
    """Unlock gated media with wallet funds."""
    try:
        data = _json_body(request)
    except ValueError:
        return JsonResponse({'error': 'invalid_json', 'message': 'Invalid JSON data'}, status=400)
    user_id = _as_int(data.get('userId'))
    try:
        grant, created = buy_with_wallet(user_id, _as_int(data.get('mediaId')))
    except CheckoutError as e:
        return _error(e)
    balance = Balance.objects.filter(user_id=grant.buyer_id).values_list('lamports', flat=True).first() or 0
    return JsonResponse({
        'ok': True,
        'purchaseId': grant.id,
        'charged': created,
        'newBalanceLamports': str(balance),
    })


@require_http_methods(["GET"])
def media_access(request):
    """Report whether a user may view a media item."""
    media_id = _as_int(request.GET.get('mediaId'))
    if not isinstance(media_id, int):
        return JsonResponse({'error': 'missing_fields', 'message': 'Missing mediaId'}, status=400)
    content = get_object_or_404(Content.objects.select_related('creator'), pk=media_id)
    user_id = _as_int(request.GET.get('userId'))
    if not isinstance(user_id, int):
        user_id = None
    return JsonResponse({'mediaId': content.id, 'unlocked': has_access(user_id, content)})
