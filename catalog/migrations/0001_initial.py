import uuid
from decimal import Decimal

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Product',
            fields=[
                ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now, editable=False, verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='updated at')),
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('is_deleted', models.BooleanField(db_index=True, default=False, verbose_name='deleted')),
                ('deleted_at', models.DateTimeField(blank=True, null=True, verbose_name='deleted at')),
                ('name', models.CharField(max_length=255, verbose_name='name')),
                ('sku', models.CharField(blank=True, db_index=True, max_length=64, verbose_name='SKU')),
                ('unit', models.CharField(choices=[('pcs', 'Piece'), ('m', 'Metre'), ('pack', 'Pack'), ('set', 'Set')], default='pcs', max_length=8, verbose_name='unit of measure')),
                ('requires_serial', models.BooleanField(default=False, help_text='Each unit is tracked individually by serial number', verbose_name='requires serial number')),
                ('warranty_days', models.PositiveIntegerField(default=0, help_text='Warranty window opened when a unit is deployed to a site', verbose_name='warranty (days)')),
                ('stock_min_level', models.DecimalField(decimal_places=2, default=Decimal('0'), help_text='Free stock below this level is reported as low', max_digits=12, verbose_name='minimum stock level')),
                ('is_archived', models.BooleanField(db_index=True, default=False, verbose_name='archived')),
                ('description', models.TextField(blank=True, verbose_name='description')),
                ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL, verbose_name='created by')),
                ('updated_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL, verbose_name='updated by')),
                ('deleted_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL, verbose_name='deleted by')),
            ],
            options={
                'verbose_name': 'product',
                'verbose_name_plural': 'products',
                'ordering': ['name'],
                'indexes': [
                    models.Index(fields=['is_archived', 'is_deleted'], name='product_active_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('is_deleted', False), models.Q(('sku', ''), _negated=True)), fields=('sku',), name='unique_active_product_sku'),
                    models.CheckConstraint(condition=models.Q(('stock_min_level__gte', 0)), name='product_min_level_non_negative'),
                ],
            },
        ),
    ]
