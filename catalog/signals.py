"""
Catalog — Signals

Audit logging for Product create and update, whether the write came
from ProductService or the Django admin.

@file catalog/signals.py
"""

from django.db.models.signals import post_save, pre_save
from django.dispatch import receiver

from core.constants import AUDIT_ACTION_CREATE, AUDIT_ACTION_UPDATE
from core.services import AuditService

from .models import Product

_product_pre: dict = {}


@receiver(pre_save, sender=Product)
def product_pre_save(sender, instance, **kwargs):
    if instance._state.adding:
        return
    try:
        old = Product.objects.get(pk=instance.pk)
    except Product.DoesNotExist:
        return
    _product_pre[str(instance.pk)] = AuditService.snapshot(old)


@receiver(post_save, sender=Product)
def product_post_save(sender, instance, created, **kwargs):
    action = AUDIT_ACTION_CREATE if created else AUDIT_ACTION_UPDATE
    old = _product_pre.pop(str(instance.pk), None)
    new = AuditService.snapshot(instance)
    if not created and old == new:
        return
    AuditService.log(
        actor=getattr(instance, '_current_user', None),
        action=action,
        model_name='Product',
        object_id=str(instance.pk),
        old_values=old,
        new_values=new,
    )
