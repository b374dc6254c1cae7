from django.test import TestCase, Client, override_settings
from django.urls import reverse
from django.utils import timezone
from django.core.cache import cache
from django.core.management import call_command
from django.core.exceptions import ValidationError
from django.contrib.auth.models import User
from unittest.mock import patch, MagicMock

from .exceptions import (
    ContentNotPurchasable,
    InsufficientBalance,
    InvalidAmount,
    LedgerError,
    MissingFields,
    NoWalletsConfigured,
    PricingUnavailable,
    TransferInvalid,
    UnknownParty,
    UnsupportedCurrency,
)
from .models import AccessGrant, Balance, Content, Creator, Deposit, Order, PoolAddress
from .solana import SolanaClient
from .validators import validate_sol_address

import base58
import io
import json
import os
import tempfile

import requests


def make_address(seed):
    """Return a valid base58 Solana address built from a one-byte seed."""
    return base58.b58encode(bytes([seed]) * 32).decode('ascii')


PAYER = make_address(1)
DEST_A = make_address(2)
DEST_B = make_address(3)
DEST_C = make_address(4)
DEPOSIT_ADDR = make_address(5)
DEPOSIT_ADDR_2 = make_address(6)
REFERENCE = make_address(7)


def rpc_tx(keys, pre, post, err=None, block_time=None):
    """A getTransaction result in jsonParsed encoding."""
    return {
        'blockTime': block_time,
        'meta': {'err': err, 'preBalances': pre, 'postBalances': post},
        'transaction': {'message': {'accountKeys': [
            {'pubkey': k, 'signer': i == 0, 'writable': True} for i, k in enumerate(keys)
        ]}},
    }


def payment_tx(destination, amount, reference, err=None, block_time=None):
    """A SOL transfer of ``amount`` lamports from PAYER carrying ``reference``."""
    return rpc_tx(
        [PAYER, destination, reference],
        [10_000_000_000, 0, 0],
        [10_000_000_000 - amount - 5000, amount, 0],
        err=err,
        block_time=block_time,
    )


class FakeLedger(SolanaClient):
    """SolanaClient whose JSON-RPC transport is replaced by in-memory fixtures."""

    def __init__(self, balances=None, signatures=None, transactions=None, fail=None):
        super().__init__(rpc_url='http://rpc.test', commitment='confirmed', timeout=1, session=MagicMock())
        self.balances = balances or {}
        self.signatures = signatures or {}
        self.transactions = transactions or {}
        self.fail = fail
        self.calls = []

    def _call(self, method, params):
        self.calls.append((method, params))
        if self.fail:
            raise self.fail
        if method == 'getBalance':
            value = self.balances.get(params[0], 0)
            if isinstance(value, Exception):
                raise value
            return {'value': value}
        if method == 'getSignaturesForAddress':
            entries = self.signatures.get(params[0], [])
            if isinstance(entries, Exception):
                raise entries
            before = params[1].get('before')
            if before:
                names = [e['signature'] for e in entries]
                entries = entries[names.index(before) + 1:]
            return [dict(e) for e in entries][:params[1]['limit']]
        if method == 'getTransaction':
            return self.transactions.get(params[0])
        raise AssertionError(f'unexpected method {method}')


def sig(signature, err=None, block_time=None):
    return {'signature': signature, 'slot': 1, 'err': err, 'blockTime': block_time, 'confirmationStatus': 'confirmed'}


class BaseTestCase(TestCase):
    def setUp(self):
        """Create a buyer, a creator with one gated item and an order wallet pool."""
        cache.clear()
        self.client = Client()
        self.buyer = User.objects.create_user(username='fan', password='pass12345')
        self.creator_user = User.objects.create_user(username='bob', password='pass12345')
        self.creator = Creator.objects.create(user=self.creator_user, handle='bob', display_name='Bob')
        self.content = Content.objects.create(creator=self.creator, title='Set #1', is_gated=True, price_usd_cents=1000)
        for address in (DEST_A, DEST_B):
            PoolAddress.objects.create(address=address, purpose=PoolAddress.PURPOSE_ORDERS)

    def make_order(self, amount_lamports=500, amount_usd_cents=250, destination=DEST_A,
                   reference=REFERENCE, content=None):
        return Order.objects.create(
            reference=reference,
            buyer=self.buyer,
            creator=self.creator,
            content=content,
            kind=Order.KIND_PPV if content else Order.KIND_TIP,
            currency='SOL',
            amount_usd_cents=amount_usd_cents,
            amount_lamports=amount_lamports,
            destination=destination,
        )

    def balance(self, user):
        return Balance.objects.filter(user=user).first()


class ModelTests(BaseTestCase):
    def test_creator_str_and_payable(self):
        """Creators print their display name and cannot be paid once suspended."""
        self.assertEqual(str(self.creator), 'Bob')
        self.assertTrue(self.creator.can_receive_payments)
        self.creator.suspended = True
        self.assertFalse(self.creator.can_receive_payments)

    def test_content_is_purchasable(self):
        """Only gated content with a positive price is purchasable."""
        self.assertTrue(self.content.is_purchasable())
        free = Content.objects.create(creator=self.creator, title='Free', is_gated=False, price_usd_cents=500)
        unpriced = Content.objects.create(creator=self.creator, title='Unpriced', is_gated=True)
        self.assertFalse(free.is_purchasable())
        self.assertFalse(unpriced.is_purchasable())

    def test_pool_returns_active_addresses_for_purpose(self):
        """PoolAddress.pool filters by purpose and active flag."""
        PoolAddress.objects.create(address=DEST_C, purpose=PoolAddress.PURPOSE_ORDERS, active=False)
        PoolAddress.objects.create(address=DEPOSIT_ADDR, purpose=PoolAddress.PURPOSE_DEPOSITS)
        self.assertEqual(sorted(PoolAddress.pool(PoolAddress.PURPOSE_ORDERS)), sorted([DEST_A, DEST_B]))
        self.assertEqual(PoolAddress.pool(PoolAddress.PURPOSE_DEPOSITS), [DEPOSIT_ADDR])

    def test_deposit_as_dict(self):
        """Deposits serialise amounts as strings for JSON clients."""
        dep = Deposit.objects.create(user=self.buyer, address=DEPOSIT_ADDR, amount_lamports=12)
        data = dep.as_dict()
        self.assertEqual(data['amountLamports'], '12')
        self.assertEqual(data['status'], Deposit.PENDING)
        self.assertIsNone(data['confirmedAt'])


class ValidatorsTests(TestCase):
    def test_validate_sol_address_valid(self):
        """Validator accepts 32-byte base58 keys."""
        validate_sol_address(PAYER)
        validate_sol_address('11111111111111111111111111111111')

    def test_validate_sol_address_invalid(self):
        """Validator rejects wrong alphabet, wrong length and other chains' formats."""
        for value in ('invalid', 'T' + 'A' * 33, '0' * 44, base58.b58encode(b'x' * 31).decode(), None):
            with self.assertRaises(ValidationError):
                validate_sol_address(value)


class SolanaClientTests(TestCase):
    def _client(self, payload=None, exc=None):
        session = MagicMock()
        if exc:
            session.post.side_effect = exc
        else:
            session.post.return_value = MagicMock(json=lambda: payload)
        return SolanaClient(rpc_url='http://rpc.test', session=session), session

    def test_get_balance(self):
        """getBalance result value is returned as an int."""
        client, session = self._client({'jsonrpc': '2.0', 'id': 1, 'result': {'context': {}, 'value': 42}})
        self.assertEqual(client.get_balance(DEST_A), 42)
        body = session.post.call_args.kwargs['json']
        self.assertEqual(body['method'], 'getBalance')
        self.assertEqual(body['params'][0], DEST_A)

    def test_rpc_error_raises_ledger_error(self):
        """A JSON-RPC error object becomes LedgerError."""
        client, _ = self._client({'jsonrpc': '2.0', 'id': 1, 'error': {'code': 429, 'message': 'rate limited'}})
        with self.assertRaises(LedgerError):
            client.get_balance(DEST_A)

    def test_network_error_raises_ledger_error(self):
        """Transport failures become LedgerError."""
        client, _ = self._client(exc=requests.ConnectionError('down'))
        with self.assertRaises(LedgerError):
            client.get_signatures_for_address(REFERENCE)

    def test_find_transaction_by_reference_returns_oldest(self):
        """The oldest referencing signature is the first candidate."""
        ledger = FakeLedger(signatures={REFERENCE: [sig('newer'), sig('older')]})
        self.assertEqual(ledger.find_transaction_by_reference(REFERENCE).signature, 'older')
        self.assertIsNone(FakeLedger().find_transaction_by_reference(REFERENCE))

    def test_find_transactions_by_reference_pages_to_oldest(self):
        """Referencing signatures beyond one page are fetched with ``before``."""
        entries = [sig(f's{i}') for i in range(7, 0, -1)]
        ledger = FakeLedger(signatures={REFERENCE: entries})
        found = ledger.find_transactions_by_reference(REFERENCE, limit=3)
        self.assertEqual([s.signature for s in found], [f's{i}' for i in range(1, 8)])
        befores = [params[1].get('before') for method, params in ledger.calls]
        self.assertEqual(befores, [None, 's5', 's2'])

    def test_validate_transfer_exact_amount(self):
        """validate_transfer accepts only the exact amount to the recipient."""
        ledger = FakeLedger(transactions={'s1': payment_tx(DEST_A, 500, REFERENCE)})
        tx = ledger.validate_transfer('s1', recipient=DEST_A, amount=500, reference=REFERENCE)
        self.assertEqual(tx.signature, 's1')
        with self.assertRaises(TransferInvalid):
            ledger.validate_transfer('s1', recipient=DEST_A, amount=499, reference=REFERENCE)
        with self.assertRaises(TransferInvalid):
            ledger.validate_transfer('s1', recipient=DEST_B, amount=500, reference=REFERENCE)
        with self.assertRaises(TransferInvalid):
            ledger.validate_transfer('s1', recipient=DEST_A, amount=500, reference=make_address(99))

    def test_validate_transfer_rejects_unconfirmed_and_failed(self):
        """Unknown (unconfirmed) and failed transactions do not validate."""
        ledger = FakeLedger(transactions={'bad': payment_tx(DEST_A, 500, REFERENCE, err={'InstructionError': [0, 'Custom']})})
        with self.assertRaises(TransferInvalid):
            ledger.validate_transfer('missing', recipient=DEST_A, amount=500)
        with self.assertRaises(TransferInvalid):
            ledger.validate_transfer('bad', recipient=DEST_A, amount=500)

    def test_get_recent_activity_balance_changes(self):
        """Recent activity exposes pre/post balances per account."""
        ledger = FakeLedger(
            signatures={DEPOSIT_ADDR: [sig('d1', block_time=1700000000)]},
            transactions={'d1': rpc_tx([PAYER, DEPOSIT_ADDR], [5000, 1000], [0, 1500])},
        )
        activity = ledger.get_recent_activity(DEPOSIT_ADDR, limit=5)
        self.assertEqual(len(activity), 1)
        self.assertEqual(activity[0].balance_change(DEPOSIT_ADDR), (1000, 1500))
        self.assertEqual(activity[0].credited_lamports(DEPOSIT_ADDR), 500)
        self.assertEqual(activity[0].credited_lamports(PAYER), 0)
        self.assertEqual(activity[0].block_time, 1700000000)


class PricingTests(TestCase):
    def setUp(self):
        cache.clear()

    @patch('fanpay.pricing.requests.get')
    def test_fetch_price_success(self, mock_get):
        """The feed's USD quote is returned and cached."""
        mock_get.return_value = MagicMock(status_code=200, json=lambda: {'USD': 150.5})
        from fanpay.pricing import get_sol_price_usd
        self.assertEqual(str(get_sol_price_usd()), '150.5')
        # Second call is served from cache
        get_sol_price_usd()
        self.assertEqual(mock_get.call_count, 1)

    @patch('fanpay.pricing.requests.get', side_effect=requests.ConnectionError('network'))
    def test_price_unavailable_without_fallback(self, _):
        """No feed, no cache and no fallback raises PricingUnavailable."""
        from fanpay.pricing import get_sol_price_usd
        with self.assertRaises(PricingUnavailable):
            get_sol_price_usd()

    @override_settings(FANPAY_FALLBACK_SOL_USD='140')
    @patch('fanpay.pricing.requests.get', side_effect=requests.ConnectionError('network'))
    def test_configured_fallback(self, _):
        """The configured fallback price is used when the feed is down."""
        from fanpay.pricing import get_sol_price_usd
        self.assertEqual(str(get_sol_price_usd()), '140')

    @patch('fanpay.pricing.requests.get')
    def test_last_known_good(self, mock_get):
        """After the fresh quote expires, a feed outage falls back to the last good quote."""
        from fanpay.pricing import FRESH_KEY, get_sol_price_usd
        mock_get.return_value = MagicMock(json=lambda: {'USD': 120})
        get_sol_price_usd()
        cache.delete(FRESH_KEY)
        mock_get.side_effect = requests.Timeout('slow')
        self.assertEqual(str(get_sol_price_usd()), '120')

    @override_settings(FANPAY_SOL_USD_PRICE='100')
    def test_usd_cents_to_lamports(self):
        """500 cents at $100/SOL is 0.05 SOL."""
        from fanpay.pricing import lamports_to_sol, usd_cents_to_lamports
        self.assertEqual(usd_cents_to_lamports(500), 50_000_000)
        self.assertEqual(lamports_to_sol(50_000_000), '0.05')
        self.assertEqual(lamports_to_sol(2_000_000_000), '2')
        with self.assertRaises(InvalidAmount):
            usd_cents_to_lamports(0)


class WalletPoolTests(TestCase):
    def test_prefers_clean_address(self):
        """The first zero-balance address is chosen; unreadable ones are skipped."""
        from fanpay.wallets import select_destination
        ledger = FakeLedger(balances={DEST_A: 10, DEST_B: 0, DEST_C: LedgerError('bad key')})
        for _ in range(5):
            self.assertEqual(select_destination([DEST_A, DEST_B, DEST_C], ledger), DEST_B)

    def test_fallback_when_no_clean_address(self):
        """A pool of funded addresses still yields an address."""
        from fanpay.wallets import select_destination
        ledger = FakeLedger(balances={DEST_A: 10, DEST_B: 20})
        self.assertIn(select_destination([DEST_A, DEST_B], ledger), (DEST_A, DEST_B))

    def test_fallback_when_ledger_down(self):
        """Probe failures on every address fall back to a random pool address."""
        from fanpay.wallets import select_destination
        ledger = FakeLedger(fail=LedgerError('down'))
        self.assertIn(select_destination([DEST_A, DEST_B], ledger), (DEST_A, DEST_B))

    def test_empty_pool(self):
        from fanpay.wallets import select_destination
        with self.assertRaises(NoWalletsConfigured):
            select_destination([], FakeLedger())


@override_settings(FANPAY_SOL_USD_PRICE='100')
class CheckoutTests(BaseTestCase):
    def create(self, **kwargs):
        from fanpay.checkout import create_order
        params = {'buyer_id': self.buyer.id, 'creator_id': self.creator.id, 'kind': 'TIP', 'amount_usd_cents': 500}
        params.update(kwargs)
        return create_order(client=FakeLedger(balances={DEST_A: 7, DEST_B: 0}), **params)

    def test_create_order_locks_amount(self):
        """A new order is PENDING with the converted amount and a clean destination."""
        order, payment = self.create()
        self.assertEqual(order.status, Order.PENDING)
        self.assertEqual(order.amount_usd_cents, 500)
        self.assertEqual(order.amount_lamports, 50_000_000)
        self.assertEqual(order.destination, DEST_B)
        validate_sol_address(order.reference)
        self.assertEqual(payment['reference'], order.reference)
        self.assertEqual(payment['amountLamports'], '50000000')
        self.assertTrue(payment['solanaPayUrl'].startswith(f'solana:{DEST_B}?amount=0.05&reference={order.reference}'))

    def test_references_are_unique(self):
        """Every order gets its own reference."""
        first, _ = self.create()
        second, _ = self.create()
        self.assertNotEqual(first.reference, second.reference)

    def test_reference_collision_regenerates(self):
        """A reference already in use is never reused."""
        existing = self.make_order(reference=make_address(50))
        with patch('fanpay.checkout.generate_reference', side_effect=[existing.reference, make_address(51)]):
            order, _ = self.create()
        self.assertEqual(order.reference, make_address(51))

    def test_reference_collision_exhausted(self):
        """Order creation fails when no unique reference can be found."""
        from fanpay.exceptions import ReferenceCollision
        existing = self.make_order(reference=make_address(50))
        with patch('fanpay.checkout.generate_reference', return_value=existing.reference):
            with self.assertRaises(ReferenceCollision):
                self.create()
        self.assertEqual(Order.objects.count(), 1)

    def test_unsupported_currency(self):
        """USDX is rejected before any order row is written."""
        with self.assertRaises(UnsupportedCurrency):
            self.create(currency='USDX')
        self.assertEqual(Order.objects.count(), 0)

    def test_missing_fields(self):
        with self.assertRaises(MissingFields):
            self.create(buyer_id=None)
        with self.assertRaises(MissingFields):
            self.create(amount_usd_cents=None)

    def test_non_positive_amount(self):
        for amount in (0, -5, '12', 1.5):
            with self.assertRaises(InvalidAmount):
                self.create(amount_usd_cents=amount)
        self.assertEqual(Order.objects.count(), 0)

    def test_amount_beyond_column_range(self):
        """Amounts that do not fit the order columns are invalid, not server errors."""
        from fanpay.pricing import MAX_USD_CENTS
        for amount in (10**15, MAX_USD_CENTS + 1):
            with self.assertRaises(InvalidAmount):
                self.create(amount_usd_cents=amount)
        self.assertEqual(Order.objects.count(), 0)

    def test_lamports_beyond_column_range(self):
        """A conversion that overflows the lamport column is rejected."""
        from decimal import Decimal
        from fanpay.pricing import MAX_USD_CENTS, usd_cents_to_lamports
        with self.assertRaises(InvalidAmount):
            usd_cents_to_lamports(MAX_USD_CENTS, price_usd=Decimal('0.000000001'))

    def test_database_range_error_on_insert(self):
        """A DataError from the insert surfaces as InvalidAmount."""
        from django.db import DataError
        with patch('fanpay.checkout.Order.objects.create', side_effect=DataError('out of range')):
            with self.assertRaises(InvalidAmount):
                self.create()

    def test_checkout_view_rejects_huge_amount(self):
        resp = self.client.post(reverse('checkout'), data=json.dumps({
            'buyerId': self.buyer.id, 'creatorId': self.creator.id, 'amountUsdCents': 10**15,
        }), content_type='application/json')
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()['error'], 'invalid_amount')

    def test_content_price_overrides_client_amount(self):
        """Content-bound orders always use the content's configured price."""
        order, _ = self.create(kind='PPV', content_id=self.content.id, amount_usd_cents=1)
        self.assertEqual(order.amount_usd_cents, 1000)
        self.assertEqual(order.content, self.content)
        self.assertEqual(order.amount_lamports, 100_000_000)

    def test_content_not_purchasable(self):
        """Missing, ungated, unpriced or foreign content cannot be bought."""
        other_user = User.objects.create_user(username='eve', password='x')
        other = Creator.objects.create(user=other_user, handle='eve', display_name='Eve')
        foreign = Content.objects.create(creator=other, title='Other', price_usd_cents=100)
        free = Content.objects.create(creator=self.creator, title='Free', is_gated=False, price_usd_cents=100)
        for content_id in (9999, free.id, foreign.id):
            with self.assertRaises(ContentNotPurchasable):
                self.create(content_id=content_id, amount_usd_cents=None)
        self.assertEqual(Order.objects.count(), 0)

    def test_unknown_or_suspended_creator(self):
        with self.assertRaises(UnknownParty):
            self.create(creator_id=9999)
        self.creator.deactivated = True
        self.creator.save()
        with self.assertRaises(UnknownParty):
            self.create()

    @override_settings(FANPAY_SOL_USD_PRICE=None)
    @patch('fanpay.pricing.requests.get', side_effect=requests.ConnectionError('network'))
    def test_pricing_unavailable(self, _):
        """Checkout surfaces PricingUnavailable and writes nothing."""
        with self.assertRaises(PricingUnavailable):
            self.create()
        self.assertEqual(Order.objects.count(), 0)

    def test_empty_pool(self):
        PoolAddress.objects.all().delete()
        with self.assertRaises(NoWalletsConfigured):
            self.create()


class ReconcilerTests(BaseTestCase):
    def check(self, ledger, reference=REFERENCE):
        from fanpay.reconciler import check_status
        return check_status(reference, client=ledger)

    def paid_ledger(self, amount=500, destination=DEST_A, reference=REFERENCE, err=None):
        return FakeLedger(
            signatures={reference: [sig('pay1')]},
            transactions={'pay1': payment_tx(destination, amount, reference, err=err)},
        )

    def test_bad_request_and_not_found(self):
        self.assertEqual(self.check(FakeLedger(), reference='').status, 'bad_request')
        self.assertEqual(self.check(FakeLedger(), reference=make_address(77)).status, 'not_found')

    def test_pending_when_nothing_found(self):
        self.make_order()
        self.assertEqual(self.check(FakeLedger()).status, 'pending')

    def test_exact_payment_confirms(self):
        """A confirmed transfer of exactly 500 to X tagged R1 confirms the order."""
        order = self.make_order(amount_lamports=500, destination=DEST_A)
        result = self.check(self.paid_ledger(amount=500))
        self.assertEqual(result.status, 'confirmed')
        self.assertEqual(result.signature, 'pay1')
        order.refresh_from_db()
        self.assertEqual(order.status, Order.CONFIRMED)
        self.assertEqual(order.signature, 'pay1')
        self.assertIsNotNone(order.confirmed_at)
        self.assertEqual(self.balance(self.creator_user).usd_cents, 250)

    def test_underpayment_stays_pending(self):
        """A transfer of 499 against a locked 500 is not a payment."""
        order = self.make_order(amount_lamports=500)
        self.assertEqual(self.check(self.paid_ledger(amount=499)).status, 'pending')
        order.refresh_from_db()
        self.assertEqual(order.status, Order.PENDING)
        self.assertIsNone(self.balance(self.creator_user))

    def test_overpayment_stays_pending(self):
        self.make_order(amount_lamports=500)
        self.assertEqual(self.check(self.paid_ledger(amount=501)).status, 'pending')

    def test_wrong_recipient_stays_pending(self):
        self.make_order(destination=DEST_A, content=self.content)
        self.assertEqual(self.check(self.paid_ledger(destination=DEST_B)).status, 'pending')
        self.assertFalse(AccessGrant.objects.exists())
        self.assertIsNone(self.balance(self.creator_user))

    def test_failed_transaction_stays_pending(self):
        self.make_order()
        ledger = FakeLedger(
            signatures={REFERENCE: [sig('pay1', err={'InstructionError': [0, 'Custom']})]},
            transactions={'pay1': payment_tx(DEST_A, 500, REFERENCE, err={'InstructionError': [0, 'Custom']})},
        )
        self.assertEqual(self.check(ledger).status, 'pending')

    def test_ledger_errors_downgrade_to_pending(self):
        """Network errors and rate limits are reported as pending."""
        order = self.make_order()
        self.assertEqual(self.check(FakeLedger(fail=LedgerError('429'))).status, 'pending')
        order.refresh_from_db()
        self.assertEqual(order.status, Order.PENDING)

    def test_decoy_before_real_payment(self):
        """An earlier transaction with the wrong amount does not block the real one."""
        self.make_order(amount_lamports=500)
        ledger = FakeLedger(
            signatures={REFERENCE: [sig('real'), sig('decoy')]},
            transactions={
                'decoy': payment_tx(DEST_A, 1, REFERENCE),
                'real': payment_tx(DEST_A, 500, REFERENCE),
            },
        )
        result = self.check(ledger)
        self.assertEqual(result.status, 'confirmed')
        self.assertEqual(result.signature, 'real')

    @override_settings(FANPAY_REFERENCE_SCAN_LIMIT=10)
    def test_flood_of_newer_decoys_does_not_hide_payment(self):
        """More referencing dust than one page still lets the real payment confirm."""
        self.make_order(amount_lamports=500)
        decoys = [f'dust{i}' for i in range(25, 0, -1)]
        transactions = {name: payment_tx(DEST_A, 1, REFERENCE) for name in decoys}
        transactions['real'] = payment_tx(DEST_A, 500, REFERENCE)
        ledger = FakeLedger(
            signatures={REFERENCE: [sig(name) for name in decoys] + [sig('real')]},
            transactions=transactions,
        )
        result = self.check(ledger)
        self.assertEqual(result.status, 'confirmed')
        self.assertEqual(result.signature, 'real')
        self.assertEqual(self.balance(self.creator_user).usd_cents, 250)

    def test_content_order_grants_access(self):
        """Confirming a content order grants access and credits the creator together."""
        self.make_order(content=self.content, amount_usd_cents=1000)
        self.check(self.paid_ledger())
        grant = AccessGrant.objects.get(buyer=self.buyer, content=self.content)
        self.assertEqual(grant.order.reference, REFERENCE)
        self.assertEqual(grant.amount_lamports, 500)
        self.assertEqual(self.balance(self.creator_user).usd_cents, 1000)

    def test_repeated_checks_are_idempotent(self):
        """Once confirmed, status is confirmed with the same signature and the ledger is not queried."""
        self.make_order(content=self.content)
        ledger = self.paid_ledger()
        self.check(ledger)
        calls = len(ledger.calls)
        for _ in range(3):
            result = self.check(ledger)
            self.assertEqual(result.status, 'confirmed')
            self.assertEqual(result.signature, 'pay1')
        self.assertEqual(len(ledger.calls), calls)
        self.assertEqual(self.balance(self.creator_user).usd_cents, 250)
        self.assertEqual(AccessGrant.objects.count(), 1)

    def test_concurrent_confirmation_applies_once(self):
        """Two pollers holding the same PENDING snapshot credit exactly once."""
        from fanpay.reconciler import apply_confirmation
        order = self.make_order(content=self.content)
        first = Order.objects.get(pk=order.pk)
        second = Order.objects.get(pk=order.pk)
        self.assertTrue(apply_confirmation(first, 'pay1'))
        self.assertFalse(apply_confirmation(second, 'pay1'))
        self.assertEqual(self.balance(self.creator_user).usd_cents, 250)
        self.assertEqual(AccessGrant.objects.count(), 1)

    def test_lost_race_reports_confirmed(self):
        """A poller that loses the race observes the winner's confirmation."""
        from fanpay import reconciler
        order = self.make_order()
        real_find = reconciler.find_valid_payment

        def find_and_race(o, client):
            signature = real_find(o, client)
            reconciler.apply_confirmation(Order.objects.get(pk=o.pk), signature)
            return signature

        with patch('fanpay.reconciler.find_valid_payment', side_effect=find_and_race):
            result = self.check(self.paid_ledger())
        self.assertEqual(result.status, 'confirmed')
        self.assertEqual(self.balance(self.creator_user).usd_cents, 250)
        order.refresh_from_db()
        self.assertEqual(order.signature, 'pay1')

    @override_settings(FANPAY_SOL_USD_PRICE='100')
    def test_locked_amount_survives_price_change(self):
        """Confirmation validates against the amount locked at checkout."""
        from fanpay.checkout import create_order
        order, _ = create_order(self.buyer.id, self.creator.id, kind='TIP', amount_usd_cents=500,
                                client=FakeLedger(balances={DEST_A: 0, DEST_B: 0}))
        with override_settings(FANPAY_SOL_USD_PRICE='200'):
            ledger = FakeLedger(
                signatures={order.reference: [sig('pay1')]},
                transactions={'pay1': payment_tx(order.destination, 50_000_000, order.reference)},
            )
            result = self.check(ledger, reference=order.reference)
        self.assertEqual(result.status, 'confirmed')
        order.refresh_from_db()
        self.assertEqual(order.amount_lamports, 50_000_000)


class DepositSweepTests(BaseTestCase):
    def setUp(self):
        super().setUp()
        self.deposit = Deposit.objects.create(user=self.buyer, address=DEPOSIT_ADDR)
        self.now = int(timezone.now().timestamp())

    def ledger_with(self, address, signature, pre, post, err=None, block_time=None):
        return FakeLedger(
            signatures={address: [sig(signature, err=err, block_time=block_time or self.now)]},
            transactions={signature: rpc_tx([PAYER, address], [10_000, pre], [5_000, post], err=err,
                                            block_time=block_time or self.now)},
        )

    def sweep(self, ledger):
        from fanpay.deposits import sweep_deposits
        return sweep_deposits(client=ledger)

    def test_balance_delta_is_credited_once(self):
        """Pre 1000 / post 1500 credits exactly 500 lamports, even across two sweeps."""
        ledger = self.ledger_with(DEPOSIT_ADDR, 'dep1', 1000, 1500)
        self.assertEqual(self.sweep(ledger), 1)
        self.assertEqual(self.sweep(ledger), 0)
        self.deposit.refresh_from_db()
        self.assertEqual(self.deposit.status, Deposit.CONFIRMED)
        self.assertEqual(self.deposit.amount_lamports, 500)
        self.assertEqual(self.deposit.tx_signature, 'dep1')
        self.assertIsNotNone(self.deposit.confirmed_at)
        self.assertEqual(self.balance(self.buyer).lamports, 500)

    def test_signature_not_credited_to_second_deposit(self):
        """A transaction already credited is not credited again to another deposit on the address."""
        ledger = self.ledger_with(DEPOSIT_ADDR, 'dep1', 1000, 1500)
        self.sweep(ledger)
        Deposit.objects.create(user=self.buyer, address=DEPOSIT_ADDR)
        self.assertEqual(self.sweep(ledger), 0)
        self.assertEqual(self.balance(self.buyer).lamports, 500)

    def test_no_activity_leaves_state_unchanged(self):
        self.assertEqual(self.sweep(FakeLedger()), 0)
        self.deposit.refresh_from_db()
        self.assertEqual(self.deposit.status, Deposit.PENDING)
        self.assertEqual(self.deposit.amount_lamports, 0)
        self.assertIsNone(self.balance(self.buyer))

    def test_recorded_signature_is_skipped(self):
        """A signature already recorded on the deposit is never credited again."""
        Deposit.objects.filter(pk=self.deposit.pk).update(tx_signature='dep1')
        self.assertEqual(self.sweep(self.ledger_with(DEPOSIT_ADDR, 'dep1', 1000, 1500)), 0)
        self.assertIsNone(self.balance(self.buyer))

    def test_outbound_transfer_is_skipped(self):
        self.assertEqual(self.sweep(self.ledger_with(DEPOSIT_ADDR, 'out1', 1500, 1000)), 0)
        self.assertIsNone(self.balance(self.buyer))

    def test_failed_transaction_is_skipped(self):
        ledger = self.ledger_with(DEPOSIT_ADDR, 'dep1', 1000, 1500, err={'InstructionError': [0, 'Custom']})
        self.assertEqual(self.sweep(ledger), 0)

    def test_activity_before_deposit_is_skipped(self):
        """Transfers that predate the deposit record belong to someone else."""
        old = self.now - 3600
        self.assertEqual(self.sweep(self.ledger_with(DEPOSIT_ADDR, 'dep0', 0, 900, block_time=old)), 0)

    def test_invalid_address_does_not_block_batch(self):
        """A malformed stored address is cancelled and the remaining deposits are swept."""
        Deposit.objects.filter(pk=self.deposit.pk).update(address='not-an-address')
        other = Deposit.objects.create(user=self.creator_user, address=DEPOSIT_ADDR_2)
        ledger = self.ledger_with(DEPOSIT_ADDR_2, 'dep2', 0, 700)
        self.assertEqual(self.sweep(ledger), 1)
        other.refresh_from_db()
        self.assertEqual(other.status, Deposit.CONFIRMED)
        self.assertEqual(self.balance(self.creator_user).lamports, 700)
        self.deposit.refresh_from_db()
        self.assertEqual(self.deposit.status, Deposit.CANCELLED)

        # Cancelled deposits are not picked up by later sweeps
        with patch('fanpay.deposits.process_deposit') as mock_process:
            self.sweep(ledger)
        mock_process.assert_not_called()

    def test_concurrent_sweeps_credit_signature_once(self):
        """Two deposits on one address racing for the same transaction credit it once."""
        second = Deposit.objects.create(user=self.creator_user, address=DEPOSIT_ADDR)
        ledger = self.ledger_with(DEPOSIT_ADDR, 'dep1', 1000, 1500)
        # Both sweepers pass the claim check before either writes
        with patch('fanpay.deposits.signature_claimed', return_value=False):
            self.assertEqual(self.sweep(ledger), 1)
        self.deposit.refresh_from_db()
        second.refresh_from_db()
        self.assertEqual(self.deposit.status, Deposit.CONFIRMED)
        self.assertEqual(second.status, Deposit.PENDING)
        self.assertIsNone(second.tx_signature)
        self.assertEqual(self.balance(self.buyer).lamports, 500)
        self.assertIsNone(self.balance(self.creator_user))

    def test_errors_do_not_block_batch(self):
        """Ledger errors and unexpected errors on one deposit are isolated."""
        Deposit.objects.create(user=self.creator_user, address=DEPOSIT_ADDR_2)
        third = Deposit.objects.create(user=self.creator_user, address=make_address(8))
        ledger = self.ledger_with(make_address(8), 'dep3', 0, 300)
        ledger.signatures[DEPOSIT_ADDR] = LedgerError('429')
        ledger.signatures[DEPOSIT_ADDR_2] = RuntimeError('boom')
        self.assertEqual(self.sweep(ledger), 1)
        third.refresh_from_db()
        self.assertEqual(third.amount_lamports, 300)

    def test_start_deposit_prefers_unwatched_address(self):
        from fanpay.deposits import start_deposit
        PoolAddress.objects.create(address=DEPOSIT_ADDR, purpose=PoolAddress.PURPOSE_DEPOSITS)
        PoolAddress.objects.create(address=DEPOSIT_ADDR_2, purpose=PoolAddress.PURPOSE_DEPOSITS)
        deposit = start_deposit(self.creator_user.id)
        self.assertEqual(deposit.address, DEPOSIT_ADDR_2)
        self.assertEqual(deposit.status, Deposit.PENDING)
        self.assertEqual(deposit.amount_lamports, 0)

    def test_start_deposit_without_pool(self):
        from fanpay.deposits import start_deposit
        with self.assertRaises(NoWalletsConfigured):
            start_deposit(self.buyer.id)
        with self.assertRaises(MissingFields):
            start_deposit(None)

    def test_wallet_summary_lists_credited_deposits(self):
        from fanpay.deposits import wallet_summary
        self.sweep(self.ledger_with(DEPOSIT_ADDR, 'dep1', 1000, 1500))
        Deposit.objects.create(user=self.buyer, address=DEPOSIT_ADDR_2)
        summary = wallet_summary(self.buyer.id)
        self.assertEqual(summary['balanceLamports'], '500')
        self.assertEqual([d['txSignature'] for d in summary['deposits']], ['dep1'])


@override_settings(FANPAY_SOL_USD_PRICE='100')
class WalletPurchaseTests(BaseTestCase):
    def test_insufficient_balance_changes_nothing(self):
        from fanpay.purchases import buy_with_wallet
        Balance.objects.create(user=self.buyer, lamports=1000)
        with self.assertRaises(InsufficientBalance):
            buy_with_wallet(self.buyer.id, self.content.id)
        self.assertEqual(self.balance(self.buyer).lamports, 1000)
        self.assertFalse(AccessGrant.objects.exists())
        self.assertIsNone(self.balance(self.creator_user))

    def test_purchase_debits_grants_and_credits(self):
        """$10 at $100/SOL debits 0.1 SOL, grants access and credits the creator once."""
        from fanpay.purchases import buy_with_wallet, has_access
        Balance.objects.create(user=self.buyer, lamports=150_000_000)
        grant, created = buy_with_wallet(self.buyer.id, self.content.id)
        self.assertTrue(created)
        self.assertEqual(grant.amount_lamports, 100_000_000)
        self.assertEqual(self.balance(self.buyer).lamports, 50_000_000)
        self.assertEqual(self.balance(self.creator_user).usd_cents, 1000)
        self.assertTrue(has_access(self.buyer.id, self.content))

        again, created = buy_with_wallet(self.buyer.id, self.content.id)
        self.assertFalse(created)
        self.assertEqual(again.pk, grant.pk)
        self.assertEqual(self.balance(self.buyer).lamports, 50_000_000)

    def test_has_access(self):
        from fanpay.purchases import has_access
        free = Content.objects.create(creator=self.creator, title='Free', is_gated=False)
        self.assertTrue(has_access(None, free))
        self.assertFalse(has_access(self.buyer.id, self.content))
        self.assertTrue(has_access(self.creator_user.id, self.content))


@override_settings(FANPAY_SOL_USD_PRICE='100')
class ViewsTests(BaseTestCase):
    def post_json(self, name, payload, **extra):
        return self.client.post(reverse(name), data=json.dumps(payload), content_type='application/json', **extra)

    @patch('fanpay.checkout.get_client')
    def test_checkout_success(self, mock_client):
        mock_client.return_value = FakeLedger(balances={DEST_A: 0, DEST_B: 0})
        resp = self.post_json('checkout', {
            'buyerId': self.buyer.id, 'creatorId': self.creator.id, 'kind': 'PPV', 'contentId': self.content.id,
        })
        self.assertEqual(resp.status_code, 200)
        data = resp.json()
        order = Order.objects.get(reference=data['reference'])
        self.assertEqual(data['orderId'], order.id)
        self.assertEqual(data['destination'], order.destination)
        self.assertEqual(data['amountLamports'], '100000000')
        self.assertTrue(data['solanaPayUrl'].startswith('solana:'))

    def test_checkout_unsupported_currency(self):
        resp = self.post_json('checkout', {
            'buyerId': self.buyer.id, 'creatorId': self.creator.id, 'amountUsdCents': 500, 'currency': 'USDX',
        })
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()['error'], 'unsupported_currency')
        self.assertFalse(Order.objects.exists())

    def test_checkout_invalid_json(self):
        resp = self.client.post(reverse('checkout'), data='{nope', content_type='application/json')
        self.assertEqual(resp.status_code, 400)

    def test_checkout_requires_post(self):
        self.assertEqual(self.client.get(reverse('checkout')).status_code, 405)

    def test_confirm_statuses(self):
        resp = self.client.get(reverse('confirm'))
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json(), {'status': 'bad_request'})
        resp = self.client.get(reverse('confirm'), {'reference': make_address(77)})
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.json(), {'status': 'not_found'})

    @patch('fanpay.reconciler.get_client')
    def test_confirm_pending_then_confirmed(self, mock_client):
        self.make_order()
        mock_client.return_value = FakeLedger()
        resp = self.client.get(reverse('confirm'), {'reference': REFERENCE})
        self.assertEqual(resp.json(), {'status': 'pending'})
        mock_client.return_value = FakeLedger(
            signatures={REFERENCE: [sig('pay1')]},
            transactions={'pay1': payment_tx(DEST_A, 500, REFERENCE)},
        )
        resp = self.client.get(reverse('confirm'), {'reference': REFERENCE})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {'status': 'confirmed', 'signature': 'pay1'})

    def test_sol_price(self):
        resp = self.client.get(reverse('sol_price'))
        self.assertEqual(resp.json(), {'ok': True, 'solUsd': 100.0})

    @override_settings(FANPAY_SOL_USD_PRICE=None)
    @patch('fanpay.pricing.requests.get', side_effect=requests.ConnectionError('network'))
    def test_sol_price_unavailable(self, _):
        cache.clear()
        resp = self.client.get(reverse('sol_price'))
        self.assertEqual(resp.status_code, 503)
        self.assertFalse(resp.json()['ok'])

    def test_deposit_start_and_wallet_me(self):
        PoolAddress.objects.create(address=DEPOSIT_ADDR, purpose=PoolAddress.PURPOSE_DEPOSITS)
        resp = self.post_json('deposit_start', {'userId': self.buyer.id})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()['address'], DEPOSIT_ADDR)
        resp = self.post_json('wallet_me', {'userId': str(self.buyer.id)})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()['balanceLamports'], '0')
        self.assertEqual(resp.json()['deposits'], [])

    def test_deposit_start_missing_user(self):
        resp = self.post_json('deposit_start', {})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()['error'], 'missing_fields')

    @override_settings(FANPAY_SWEEP_TOKEN='s3cret')
    @patch('fanpay.deposits.get_client')
    def test_wallet_sync_requires_token(self, mock_client):
        mock_client.return_value = FakeLedger()
        self.assertEqual(self.client.post(reverse('wallet_sync')).status_code, 403)
        resp = self.client.post(reverse('wallet_sync'), HTTP_X_SWEEP_TOKEN='s3cret')
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {'ok': True, 'processed': 0})

    def test_buy_with_wallet_view(self):
        Balance.objects.create(user=self.buyer, lamports=100_000_000)
        resp = self.post_json('media_buy_with_wallet', {'userId': self.buyer.id, 'mediaId': self.content.id})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()['newBalanceLamports'], '0')
        resp = self.client.get(reverse('media_access'), {'userId': self.buyer.id, 'mediaId': self.content.id})
        self.assertTrue(resp.json()['unlocked'])

    def test_buy_with_wallet_insufficient(self):
        resp = self.post_json('media_buy_with_wallet', {'userId': self.buyer.id, 'mediaId': self.content.id})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()['error'], 'insufficient_balance')

    def test_media_access_locked(self):
        resp = self.client.get(reverse('media_access'), {'userId': self.buyer.id, 'mediaId': self.content.id})
        self.assertFalse(resp.json()['unlocked'])
        self.assertEqual(self.client.get(reverse('media_access')).status_code, 400)


class ManagementCommandTests(BaseTestCase):
    @patch('fanpay.deposits.get_client')
    def test_sweep_deposits(self, mock_client):
        """sweep_deposits credits pending deposits and reports the count."""
        Deposit.objects.create(user=self.buyer, address=DEPOSIT_ADDR)
        now = int(timezone.now().timestamp())
        mock_client.return_value = FakeLedger(
            signatures={DEPOSIT_ADDR: [sig('dep1', block_time=now)]},
            transactions={'dep1': rpc_tx([PAYER, DEPOSIT_ADDR], [10_000, 0], [5_000, 4_000], block_time=now)},
        )
        out = io.StringIO()
        call_command('sweep_deposits', stdout=out)
        self.assertIn('Successfully processed 1 deposits', out.getvalue())
        self.assertEqual(self.balance(self.buyer).lamports, 4_000)

    def test_load_wallet_pool(self):
        """load_wallet_pool imports valid new addresses and skips the rest."""
        fd, path = tempfile.mkstemp(suffix='.json')
        with os.fdopen(fd, 'w') as fh:
            json.dump({'wallets': [DEST_A, DEPOSIT_ADDR, 'bogus']}, fh)
        try:
            out, err = io.StringIO(), io.StringIO()
            call_command('load_wallet_pool', path, '--purpose', 'deposits', stdout=out, stderr=err)
        finally:
            os.remove(path)
        self.assertIn('Successfully added 1 addresses to the deposits pool', out.getvalue())
        self.assertIn('bogus', err.getvalue())
        self.assertEqual(PoolAddress.pool(PoolAddress.PURPOSE_DEPOSITS), [DEPOSIT_ADDR])
