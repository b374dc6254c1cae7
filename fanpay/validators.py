"""
Fanpay Validators

Validation helpers for Solana addresses and payment references.
All validators raise Django ValidationError on invalid input.
"""

from django.core.exceptions import ValidationError
import base58


def validate_sol_address(address):
    """
    Validate a Solana address (base58 encoded 32-byte public key).

    Addresses are 32 to 44 base58 characters and must decode to exactly
    32 bytes. This rejects typos and addresses from other chains before
    they reach the pool or a deposit record.

    Args:
        address: String to validate as a Solana address

    Raises:
        ValidationError: If the value is not a valid Solana address
    """
    if not isinstance(address, str) or not 32 <= len(address) <= 44:
        raise ValidationError("Invalid Solana address.")
    try:
        raw = base58.b58decode(address)
    except ValueError:
        raise ValidationError("Invalid Solana address.")
    if len(raw) != 32:
        raise ValidationError("Invalid Solana address.")


def is_valid_sol_address(address):
    try:
        validate_sol_address(address)
    except ValidationError:
        return False
    return True
