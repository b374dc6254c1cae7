"""
Fanpay Django Application

A platform for fans to pay creators directly in SOL.

Features:
- Checkout orders with a price locked in lamports at creation time
- Solana Pay style payment requests tagged with an unguessable reference
- Settlement reconciliation against the Solana ledger, applied exactly once
- Access grants for gated content and creator earnings balances
- Open-ended wallet top-ups detected by sweeping platform deposit addresses
- Wallet-funded purchases of gated content

The external ledger is only ever polled; a payment that has not shown up yet
is reported as pending and picked up on a later poll or sweep.
"""
