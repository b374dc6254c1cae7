"""
Fanpay Models

This module contains the core data models for the Fanpay application:
- Creator: A payee profile that can receive tips, subscriptions and unlocks
- Content: A creator's media item, optionally gated behind a USD price
- PoolAddress: Platform-controlled Solana addresses used for orders and deposits
- Order: A payment request whose SOL amount is locked at creation time
- AccessGrant: A permanent unlock of gated content for a buyer
- Balance: Per-user totals of creator earnings and spendable wallet funds
- Deposit: An open-ended wallet top-up detected on a deposit address

Orders and deposits are never deleted; they are the audit trail of every
credit applied to a Balance.
"""

from django.conf import settings
from django.db import models
from django.utils import timezone

from .validators import validate_sol_address


class Creator(models.Model):
    """
    Represents a content creator who can be paid by fans.

    Attributes:
        user: One-to-one relationship with the Django user receiving earnings
        handle: Unique public handle of the creator
        display_name: Public display name shown to fans
        bio: Optional biography text
        suspended: Whether the creator account is suspended by the platform
        deactivated: Whether the creator has deactivated their account
    """
    user = models.OneToOneField(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='creator')
    handle = models.SlugField(max_length=30, unique=True)
    display_name = models.CharField(max_length=100)
    bio = models.TextField(blank=True)
    suspended = models.BooleanField(default=False)
    deactivated = models.BooleanField(default=False)

    def __str__(self):
        return self.display_name

    @property
    def can_receive_payments(self):
        """Suspended and deactivated creators cannot be paid."""
        return not (self.suspended or self.deactivated)


class Content(models.Model):
    """
    A media item published by a creator.

    Gated content must be bought before it is shown; its price is the single
    source of truth for checkout, so a client can never choose what it pays.

    Attributes:
        creator: Owner of the content
        title: Short description shown in payment requests
        is_gated: Whether access requires a purchase
        price_usd_cents: Price in US cents, or None when not for sale
    """
    creator = models.ForeignKey(Creator, on_delete=models.CASCADE, related_name='contents')
    title = models.CharField(max_length=200)
    is_gated = models.BooleanField(default=True)
    price_usd_cents = models.PositiveIntegerField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return self.title

    def is_purchasable(self):
        """Return True if this content is gated and has a positive price."""
        return self.is_gated and bool(self.price_usd_cents)


class PoolAddress(models.Model):
    """
    A platform-controlled Solana address.

    The wallet pool for a purpose is the set of active addresses with that
    purpose. Addresses are shared by every checkout or deposit and never
    belong to a single order.
    """
    PURPOSE_ORDERS = 'orders'
    PURPOSE_DEPOSITS = 'deposits'
    PURPOSE_CHOICES = [
        (PURPOSE_ORDERS, 'Orders'),
        (PURPOSE_DEPOSITS, 'Deposits'),
    ]

    address = models.CharField(max_length=64, unique=True, validators=[validate_sol_address])
    purpose = models.CharField(max_length=16, choices=PURPOSE_CHOICES, default=PURPOSE_ORDERS)
    active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name_plural = 'pool addresses'
        indexes = [
            models.Index(fields=['purpose', 'active'], name='fanpay_pool_purpose_idx'),
        ]

    def __str__(self):
        return f"{self.address} ({self.purpose})"

    @classmethod
    def pool(cls, purpose):
        """Return the active addresses for ``purpose`` as a list of strings."""
        return list(
            cls.objects.filter(purpose=purpose, active=True).values_list('address', flat=True)
        )


class Order(models.Model):
    """
    A payment a buyer owes a creator.

    The lamport amount is computed once from the price quote at creation and
    never recomputed; confirmation validates the on-chain transfer against it.
    Status moves only from PENDING to CONFIRMED, and the confirming signature
    is attached exactly once.

    Attributes:
        reference: Unguessable base58 token the payer's transaction must carry
        buyer: User paying for the order
        creator: Creator receiving the payment
        content: Gated content unlocked by this order, if any
        kind: One-time unlock, tip or subscription
        currency: Settlement currency (SOL)
        amount_usd_cents: Requested fiat amount in cents
        amount_lamports: Locked settlement amount in lamports
        destination: Platform address the payer must send to
        status: PENDING or CONFIRMED
        signature: Confirming transaction signature, set on confirmation
    """
    PENDING = 'PENDING'
    CONFIRMED = 'CONFIRMED'
    STATUS_CHOICES = [
        (PENDING, 'Pending'),
        (CONFIRMED, 'Confirmed'),
    ]

    KIND_PPV = 'PPV'
    KIND_TIP = 'TIP'
    KIND_SUBSCRIPTION = 'SUBSCRIPTION'
    KIND_CHOICES = [
        (KIND_PPV, 'Pay-per-view unlock'),
        (KIND_TIP, 'Tip'),
        (KIND_SUBSCRIPTION, 'Subscription'),
    ]

    reference = models.CharField(max_length=64, unique=True)
    buyer = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='orders')
    creator = models.ForeignKey(Creator, on_delete=models.PROTECT, related_name='orders')
    content = models.ForeignKey(Content, on_delete=models.PROTECT, related_name='orders', blank=True, null=True)
    kind = models.CharField(max_length=16, choices=KIND_CHOICES, default=KIND_PPV)
    currency = models.CharField(max_length=10, default='SOL')
    amount_usd_cents = models.PositiveIntegerField()
    amount_lamports = models.PositiveBigIntegerField()
    destination = models.CharField(max_length=64)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=PENDING)
    signature = models.CharField(max_length=128, unique=True, blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    confirmed_at = models.DateTimeField(blank=True, null=True)

    class Meta:
        indexes = [
            models.Index(fields=['status', 'created_at'], name='fanpay_order_status_idx'),
        ]

    def __str__(self):
        return f"{self.kind} {self.reference} ({self.status})"

    @property
    def is_confirmed(self):
        return self.status == self.CONFIRMED


class AccessGrant(models.Model):
    """
    A permanent unlock of gated content for a buyer.

    Created inside the same transaction as the order confirmation or wallet
    debit that paid for it; at most one per buyer and content.
    """
    buyer = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='access_grants')
    content = models.ForeignKey(Content, on_delete=models.CASCADE, related_name='access_grants')
    order = models.OneToOneField(Order, on_delete=models.PROTECT, related_name='access_grant', blank=True, null=True)
    amount_lamports = models.PositiveBigIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['buyer', 'content'], name='fanpay_unique_access_grant'),
        ]

    def __str__(self):
        return f"{self.buyer} -> {self.content}"


class Balance(models.Model):
    """
    Per-user running totals.

    ``usd_cents`` holds creator earnings credited by confirmed orders;
    ``lamports`` holds spendable wallet funds credited by deposits and
    debited by wallet purchases. Both are only ever changed with database-side
    deltas inside the transaction that justifies them.
    """
    user = models.OneToOneField(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='balance')
    usd_cents = models.PositiveBigIntegerField(default=0)
    lamports = models.PositiveBigIntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"Balance({self.user}, usd_cents={self.usd_cents}, lamports={self.lamports})"


class Deposit(models.Model):
    """
    An open-ended top-up of a user's wallet.

    Created PENDING with a zero amount when a deposit address is issued. The
    sweeper credits it once from the balance delta it observes on chain and
    marks it CONFIRMED; the credited amount is written once. A deposit whose
    address cannot be read is CANCELLED and never swept again.
    """
    PENDING = 'PENDING'
    CONFIRMED = 'CONFIRMED'
    CANCELLED = 'CANCELLED'
    STATUS_CHOICES = [
        (PENDING, 'Pending'),
        (CONFIRMED, 'Confirmed'),
        (CANCELLED, 'Cancelled'),
    ]

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='deposits')
    address = models.CharField(max_length=64)
    amount_lamports = models.PositiveBigIntegerField(default=0)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=PENDING)
    tx_signature = models.CharField(max_length=128, blank=True, null=True)
    created_at = models.DateTimeField(default=timezone.now)
    confirmed_at = models.DateTimeField(blank=True, null=True)

    class Meta:
        indexes = [
            models.Index(fields=['user', 'address'], name='fanpay_dep_user_addr_idx'),
            models.Index(fields=['status'], name='fanpay_dep_status_idx'),
        ]
        constraints = [
            # One on-chain transaction credits at most one deposit per address
            models.UniqueConstraint(fields=['address', 'tx_signature'], name='fanpay_unique_deposit_tx'),
        ]

    def __str__(self):
        return f"Deposit {self.pk} {self.address} ({self.status})"

    def as_dict(self):
        return {
            'id': self.id,
            'userId': self.user_id,
            'address': self.address,
            'txSignature': self.tx_signature,
            'amountLamports': str(self.amount_lamports),
            'status': self.status,
            'createdAt': self.created_at.isoformat(),
            'confirmedAt': self.confirmed_at.isoformat() if self.confirmed_at else None,
        }
