"""
Fanpay Load Wallet Pool Management Command

Imports platform-controlled Solana addresses into the wallet pool from a JSON
file shaped like {"wallets": ["<address>", ...]}. Invalid addresses are
reported and skipped; addresses already in the pool are left untouched.

Usage:
    python manage.py load_wallet_pool wallets.json --purpose deposits
"""

import json

from django.core.management.base import BaseCommand, CommandError

from fanpay.models import PoolAddress
from fanpay.validators import is_valid_sol_address


class Command(BaseCommand):
    help = 'Load platform wallet addresses into the order or deposit pool'

    def add_arguments(self, parser):
        parser.add_argument('path', help='JSON file with a "wallets" list')
        parser.add_argument(
            '--purpose',
            choices=[choice for choice, _ in PoolAddress.PURPOSE_CHOICES],
            default=PoolAddress.PURPOSE_ORDERS,
        )

    def handle(self, *args, **options):
        try:
            with open(options['path'], encoding='utf-8') as fh:
                data = json.load(fh)
        except (OSError, ValueError) as e:
            raise CommandError(f"Could not read {options['path']}: {e}")

        wallets = data.get('wallets') if isinstance(data, dict) else None
        if not isinstance(wallets, list):
            raise CommandError('Expected a JSON object with a "wallets" list')

        added = 0
        for address in wallets:
            if not is_valid_sol_address(address):
                self.stderr.write(f'Skipping invalid address: {address}')
                continue
            _, created = PoolAddress.objects.get_or_create(
                address=address,
                defaults={'purpose': options['purpose']},
            )
            if created:
                added += 1

        self.stdout.write(
            self.style.SUCCESS(
                f'Successfully added {added} addresses to the {options["purpose"]} pool'
            )
        )
