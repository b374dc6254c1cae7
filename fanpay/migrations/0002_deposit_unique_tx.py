from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ('fanpay', '0001_initial'),
    ]

    operations = [
        migrations.AddConstraint(
            model_name='deposit',
            constraint=models.UniqueConstraint(fields=('address', 'tx_signature'), name='fanpay_unique_deposit_tx'),
        ),
    ]
