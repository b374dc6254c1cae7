"""
Fanpay Sweep Deposits Management Command

This Django management command runs one deposit sweep: every pending wallet
deposit is checked against recent activity on its deposit address and
credited once when a balance increase is found.

Should be run periodically via cron job or similar scheduling system.

Usage:
    python manage.py sweep_deposits
"""

from django.core.management.base import BaseCommand

from fanpay.deposits import sweep_deposits


class Command(BaseCommand):
    """
    Django management command to credit pending wallet deposits.

    Failures on individual deposits are logged by the sweep and never stop
    it; those deposits are retried on the next run.
    """
    help = 'Credit pending wallet deposits from on-chain activity'

    def handle(self, *args, **options):
        processed = sweep_deposits()
        self.stdout.write(
            self.style.SUCCESS(
                f'Successfully processed {processed} deposits'
            )
        )
