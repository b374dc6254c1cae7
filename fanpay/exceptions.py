"""
Fanpay Exceptions

Errors raised by the payment core. Checkout errors carry a machine-readable
code and the HTTP status the API answers with; ledger errors never reach a
polling caller because the reconciler and sweeper downgrade them.
"""


class FanpayError(Exception):
    """Base class for all Fanpay errors."""


class CheckoutError(FanpayError):
    """A request the payment API rejects; surfaced verbatim, never retried."""
    code = 'checkout_error'
    status = 400
    default_message = 'Checkout failed.'

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def as_dict(self):
        return {'error': self.code, 'message': self.message}


class MissingFields(CheckoutError):
    code = 'missing_fields'
    default_message = 'Required fields are missing.'


class UnsupportedCurrency(CheckoutError):
    code = 'unsupported_currency'
    default_message = 'This settlement currency is not supported.'


class InvalidAmount(CheckoutError):
    code = 'invalid_amount'
    default_message = 'Amount must be a positive whole number of cents.'


class UnknownParty(CheckoutError):
    code = 'unknown_party'
    status = 404
    default_message = 'Buyer or creator not found.'


class ContentNotPurchasable(CheckoutError):
    code = 'content_not_purchasable'
    default_message = 'This content is not available for purchase.'


class PricingUnavailable(CheckoutError):
    code = 'pricing_unavailable'
    status = 503
    default_message = 'SOL price is currently unavailable.'


class NoWalletsConfigured(CheckoutError):
    code = 'no_wallets_configured'
    status = 503
    default_message = 'No platform wallets are configured.'


class InsufficientBalance(CheckoutError):
    code = 'insufficient_balance'
    default_message = 'Insufficient wallet balance.'


class ReferenceCollision(CheckoutError):
    code = 'reference_collision'
    status = 500
    default_message = 'Could not allocate a unique payment reference.'


class LedgerError(FanpayError):
    """Any failure talking to the Solana ledger (network, RPC error, bad payload)."""


class TransferInvalid(FanpayError):
    """A candidate transaction does not pay the order as locked."""
