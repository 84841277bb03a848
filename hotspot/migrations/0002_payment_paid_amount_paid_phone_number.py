from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("hotspot", "0001_initial"),
    ]

    operations = [
        migrations.AddField(
            model_name="payment",
            name="paid_amount",
            field=models.DecimalField(
                blank=True, decimal_places=2, max_digits=10, null=True
            ),
        ),
        migrations.AddField(
            model_name="payment",
            name="paid_phone_number",
            field=models.CharField(blank=True, max_length=15),
        ),
    ]
