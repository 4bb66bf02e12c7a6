import uuid

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('catalog', '0001_initial'),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Lot',
            fields=[
                ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now, editable=False, verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='updated at')),
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('is_deleted', models.BooleanField(db_index=True, default=False, verbose_name='deleted')),
                ('deleted_at', models.DateTimeField(blank=True, null=True, verbose_name='deleted at')),
                ('serial_number', models.CharField(blank=True, db_index=True, max_length=100, null=True, verbose_name='serial number')),
                ('quantity', models.DecimalField(decimal_places=2, max_digits=12, verbose_name='quantity')),
                ('unit_cost', models.DecimalField(decimal_places=2, max_digits=14, verbose_name='unit cost')),
                ('status', models.CharField(choices=[('IN_STOCK', 'In stock'), ('RESERVED', 'Reserved'), ('DEPLOYED', 'Deployed'), ('SCRAPPED', 'Scrapped'), ('MAINTENANCE', 'Maintenance')], db_index=True, default='IN_STOCK', max_length=12, verbose_name='status')),
                ('site_id', models.UUIDField(blank=True, db_index=True, help_text='Installation site the lot is deployed at', null=True, verbose_name='site ID')),
                ('reserved_for_document_id', models.UUIDField(blank=True, db_index=True, help_text='Sales document (invoice) the lot is reserved for', null=True, verbose_name='reserved for document')),
                ('warranty_start', models.DateTimeField(blank=True, null=True, verbose_name='warranty start')),
                ('warranty_end', models.DateTimeField(blank=True, null=True, verbose_name='warranty end')),
                ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL, verbose_name='created by')),
                ('updated_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL, verbose_name='updated by')),
                ('deleted_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL, verbose_name='deleted by')),
                ('product', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='lots', to='catalog.product', verbose_name='product')),
                ('source_lot', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='split_lots', to='inventory.lot', verbose_name='split from')),
            ],
            options={
                'verbose_name': 'lot',
                'verbose_name_plural': 'lots',
                'ordering': ['created_at', 'id'],
                'indexes': [
                    models.Index(fields=['product', 'status', 'is_deleted'], name='lot_product_status_idx'),
                    models.Index(fields=['reserved_for_document_id', 'product'], name='lot_document_product_idx'),
                    models.Index(fields=['site_id', 'status'], name='lot_site_status_idx'),
                ],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('quantity__gte', 0)), name='lot_quantity_non_negative'),
                    models.CheckConstraint(condition=models.Q(('quantity__gt', 0), ('is_deleted', True), _connector='OR'), name='lot_quantity_positive_unless_deleted'),
                    models.CheckConstraint(condition=models.Q(('unit_cost__gte', 0)), name='lot_unit_cost_non_negative'),
                    models.CheckConstraint(condition=models.Q(('serial_number__isnull', True), ('quantity', 1), _connector='OR'), name='lot_serial_implies_single_unit'),
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(('reserved_for_document_id__isnull', True), ('site_id__isnull', False), ('status', 'DEPLOYED')),
                            models.Q(('reserved_for_document_id__isnull', False), ('site_id__isnull', True), ('status', 'RESERVED')),
                            models.Q(('reserved_for_document_id__isnull', True), ('site_id__isnull', True), ('status__in', ['IN_STOCK', 'SCRAPPED', 'MAINTENANCE'])),
                            _connector='OR',
                        ),
                        name='lot_status_companions_consistent',
                    ),
                    models.UniqueConstraint(condition=models.Q(('is_deleted', False), ('serial_number__isnull', False)), fields=('product', 'serial_number'), name='unique_active_serial_per_product'),
                ],
            },
        ),
        migrations.CreateModel(
            name='HistoryEntry',
            fields=[
                ('id', models.BigAutoField(primary_key=True, serialize=False)),
                ('action_type', models.CharField(choices=[('RECEIVE', 'Receive'), ('DEPLOY', 'Deploy'), ('RETURN', 'Return'), ('SCRAP', 'Scrap'), ('REPLACE', 'Replace'), ('RESERVE', 'Reserve'), ('RELEASE', 'Release reservation'), ('ADJUST', 'Adjust')], db_index=True, max_length=10, verbose_name='action')),
                ('quantity', models.DecimalField(decimal_places=2, max_digits=12, verbose_name='quantity')),
                ('from_site_id', models.UUIDField(blank=True, null=True, verbose_name='from site')),
                ('to_site_id', models.UUIDField(blank=True, null=True, verbose_name='to site')),
                ('document_id', models.UUIDField(blank=True, db_index=True, null=True, verbose_name='document')),
                ('shipment_id', models.UUIDField(blank=True, db_index=True, help_text='Groups the entries written by one batch shipment', null=True, verbose_name='shipment')),
                ('comment', models.TextField(blank=True, verbose_name='comment')),
                ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now, verbose_name='created at')),
                ('actor', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL, verbose_name='actor')),
                ('lot', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='history', to='inventory.lot', verbose_name='lot')),
                ('source_lot', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='derived_history', to='inventory.lot', verbose_name='split from')),
            ],
            options={
                'verbose_name': 'history entry',
                'verbose_name_plural': 'history entries',
                'ordering': ['id'],
                'indexes': [
                    models.Index(fields=['lot', 'id'], name='history_lot_seq_idx'),
                    models.Index(fields=['source_lot', 'id'], name='history_source_seq_idx'),
                ],
            },
        ),
    ]
