"""
Fanpay Solana Ledger Client

Thin JSON-RPC client for the queries the payment core needs from the Solana
ledger:
- Balance probes for wallet pool selection
- Finding transactions that carry an order's reference key
- Validating that a transaction paid an exact amount to an address
- Recent activity on deposit addresses with per-account balance changes

Every failure (network, HTTP status, JSON-RPC error, malformed payload) is
raised as LedgerError. Callers that poll decide how to degrade.
"""

import logging
import itertools

import requests
from django.conf import settings

from .exceptions import LedgerError, TransferInvalid

logger = logging.getLogger(__name__)

LAMPORTS_PER_SOL = 1_000_000_000

_request_ids = itertools.count(1)


class SignatureInfo:
    """One entry of getSignaturesForAddress."""

    def __init__(self, signature, slot=None, err=None, block_time=None, confirmation_status=None):
        self.signature = signature
        self.slot = slot
        self.err = err
        self.block_time = block_time
        self.confirmation_status = confirmation_status

    @classmethod
    def from_rpc(cls, data):
        return cls(
            signature=data['signature'],
            slot=data.get('slot'),
            err=data.get('err'),
            block_time=data.get('blockTime'),
            confirmation_status=data.get('confirmationStatus'),
        )

    @property
    def succeeded(self):
        return self.err is None


class LedgerTransaction:
    """
    A confirmed transaction reduced to what reconciliation needs.

    Attributes:
        signature: Transaction signature
        block_time: Unix timestamp of the block, if known
        err: Execution error reported by the ledger, None on success
        account_keys: Account addresses in message order
        pre_balances: Lamport balances before execution, per account key
        post_balances: Lamport balances after execution, per account key
    """

    def __init__(self, signature, block_time, err, account_keys, pre_balances, post_balances):
        self.signature = signature
        self.block_time = block_time
        self.err = err
        self.account_keys = account_keys
        self.pre_balances = pre_balances
        self.post_balances = post_balances

    @classmethod
    def from_rpc(cls, signature, data):
        try:
            meta = data.get('meta') or {}
            message = data['transaction']['message']
            keys = []
            for key in message.get('accountKeys') or []:
                # jsonParsed encoding returns {pubkey, signer, writable} objects
                keys.append(key['pubkey'] if isinstance(key, dict) else key)
            return cls(
                signature=signature,
                block_time=data.get('blockTime'),
                err=meta.get('err'),
                account_keys=keys,
                pre_balances=[int(b) for b in meta.get('preBalances') or []],
                post_balances=[int(b) for b in meta.get('postBalances') or []],
            )
        except (KeyError, TypeError, ValueError) as e:
            raise LedgerError(f"Malformed transaction {signature}: {e}")

    @property
    def succeeded(self):
        return self.err is None

    def involves(self, address):
        return address in self.account_keys

    def balance_change(self, address):
        """
        Return (pre, post) lamport balances of ``address`` in this transaction,
        or None when the address is not one of its accounts.
        """
        try:
            idx = self.account_keys.index(address)
        except ValueError:
            return None
        pre = self.pre_balances[idx] if idx < len(self.pre_balances) else 0
        post = self.post_balances[idx] if idx < len(self.post_balances) else 0
        return pre, post

    def credited_lamports(self, address):
        """Positive balance delta of ``address``; 0 for outbound or unrelated."""
        change = self.balance_change(address)
        if change is None:
            return 0
        pre, post = change
        return max(post - pre, 0)


class SolanaClient:
    """
    Solana JSON-RPC client bound to one endpoint and commitment level.

    Args:
        rpc_url: JSON-RPC endpoint, defaults to settings.SOLANA_RPC_URL
        commitment: 'confirmed' or 'finalized', defaults to settings.SOLANA_COMMITMENT
        timeout: Seconds per request, defaults to settings.SOLANA_RPC_TIMEOUT
    """

    def __init__(self, rpc_url=None, commitment=None, timeout=None, session=None):
        self.rpc_url = rpc_url or settings.SOLANA_RPC_URL
        self.commitment = commitment or settings.SOLANA_COMMITMENT
        self.timeout = timeout or settings.SOLANA_RPC_TIMEOUT
        self.session = session or requests.Session()

    def _call(self, method, params):
        payload = {
            'jsonrpc': '2.0',
            'id': next(_request_ids),
            'method': method,
            'params': params,
        }
        try:
            response = self.session.post(self.rpc_url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            raise LedgerError(f"{method} failed: {e}")
        if data.get('error'):
            raise LedgerError(f"{method} returned error: {data['error']}")
        if 'result' not in data:
            raise LedgerError(f"{method} returned no result")
        return data['result']

    def get_balance(self, address):
        """Return the lamport balance of ``address``."""
        result = self._call('getBalance', [address, {'commitment': self.commitment}])
        try:
            return int(result['value'])
        except (KeyError, TypeError, ValueError):
            raise LedgerError(f"getBalance returned malformed result for {address}")

    def get_signatures_for_address(self, address, limit=10, before=None):
        """Return SignatureInfo entries for ``address``, newest first."""
        options = {'limit': limit, 'commitment': self.commitment}
        if before:
            options['before'] = before
        result = self._call('getSignaturesForAddress', [address, options])
        try:
            return [SignatureInfo.from_rpc(item) for item in result]
        except (KeyError, TypeError) as e:
            raise LedgerError(f"getSignaturesForAddress returned malformed result: {e}")

    def get_transaction(self, signature):
        """
        Fetch a transaction at the configured commitment.

        Returns:
            LedgerTransaction, or None when the ledger does not (yet) know it
        """
        result = self._call('getTransaction', [signature, {
            'encoding': 'jsonParsed',
            'commitment': self.commitment,
            'maxSupportedTransactionVersion': 0,
        }])
        if result is None:
            return None
        return LedgerTransaction.from_rpc(signature, result)

    def find_transactions_by_reference(self, reference, limit=10):
        """
        Return signatures of every transaction that includes ``reference`` as
        an account key, oldest first. An empty list means nothing has been
        observed yet.

        Pages back through history ``limit`` signatures at a time until a
        short page marks the oldest one, so newer transactions carrying the
        same reference can never push an earlier payment out of view.
        """
        signatures = []
        before = None
        while True:
            page = self.get_signatures_for_address(reference, limit=limit, before=before)
            signatures.extend(page)
            if len(page) < limit:
                break
            before = page[-1].signature
        return list(reversed(signatures))

    def find_transaction_by_reference(self, reference):
        """Return the oldest SignatureInfo referencing ``reference``, or None."""
        found = self.find_transactions_by_reference(reference)
        return found[0] if found else None

    def validate_transfer(self, signature, recipient, amount, reference=None):
        """
        Check that ``signature`` is a confirmed, successful transaction that
        increased ``recipient``'s balance by exactly ``amount`` lamports.

        Raises:
            TransferInvalid: If the transaction does not pay as expected
            LedgerError: If the ledger cannot be queried

        Returns:
            LedgerTransaction that passed validation
        """
        tx = self.get_transaction(signature)
        if tx is None:
            raise TransferInvalid(f"{signature} is not confirmed")
        if not tx.succeeded:
            raise TransferInvalid(f"{signature} failed on chain: {tx.err}")
        if reference and not tx.involves(reference):
            raise TransferInvalid(f"{signature} does not carry reference {reference}")
        change = tx.balance_change(recipient)
        if change is None:
            raise TransferInvalid(f"{signature} does not touch recipient {recipient}")
        pre, post = change
        if post - pre != amount:
            raise TransferInvalid(
                f"{signature} moved {post - pre} lamports to {recipient}, expected {amount}"
            )
        return tx

    def get_recent_activity(self, address, limit=10):
        """
        Return the most recent transactions touching ``address``, newest
        first, with per-account pre/post balances.
        """
        activity = []
        for info in self.get_signatures_for_address(address, limit=limit):
            tx = self.get_transaction(info.signature)
            if tx is None:
                continue
            if tx.block_time is None:
                tx.block_time = info.block_time
            activity.append(tx)
        return activity


def get_client():
    return SolanaClient()
