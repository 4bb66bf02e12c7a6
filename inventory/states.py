"""
Inventory — Lot States

The status column and its companion columns (site, reserved document,
warranty window) form one value. Services pass these variants around
instead of loose fields, and the lot store maps them onto the row.

@file inventory/states.py
"""

from dataclasses import dataclass
from datetime import datetime
from typing import ClassVar, Union
from uuid import UUID

from .models import Lot, LotStatus


@dataclass(frozen=True)
class InStock:
    status: ClassVar[str] = LotStatus.IN_STOCK


@dataclass(frozen=True)
class Reserved:
    document_id: UUID
    status: ClassVar[str] = LotStatus.RESERVED


@dataclass(frozen=True)
class Deployed:
    site_id: UUID
    warranty_start: datetime
    warranty_end: datetime
    status: ClassVar[str] = LotStatus.DEPLOYED

    @classmethod
    def starting(cls, site_id: UUID, product, at: datetime) -> 'Deployed':
        """Open a fresh warranty window for the product at ``at``."""
        return cls(site_id=site_id, warranty_start=at, warranty_end=at + product.warranty_period)


@dataclass(frozen=True)
class Scrapped:
    status: ClassVar[str] = LotStatus.SCRAPPED


@dataclass(frozen=True)
class Maintenance:
    status: ClassVar[str] = LotStatus.MAINTENANCE


LotState = Union[InStock, Reserved, Deployed, Scrapped, Maintenance]


def state_of(lot: Lot) -> LotState:
    """Read the variant a lot row currently holds."""
    if lot.status == LotStatus.RESERVED:
        return Reserved(document_id=lot.reserved_for_document_id)
    if lot.status == LotStatus.DEPLOYED:
        return Deployed(
            site_id=lot.site_id,
            warranty_start=lot.warranty_start,
            warranty_end=lot.warranty_end,
        )
    if lot.status == LotStatus.SCRAPPED:
        return Scrapped()
    if lot.status == LotStatus.MAINTENANCE:
        return Maintenance()
    return InStock()


def state_fields(state: LotState) -> dict:
    """
    Column values for a variant. Warranty columns are written only when
    entering DEPLOYED; other states leave the last window on the row.
    """
    fields = {
        'status': state.status,
        'site_id': None,
        'reserved_for_document_id': None,
    }
    if isinstance(state, Reserved):
        fields['reserved_for_document_id'] = state.document_id
    elif isinstance(state, Deployed):
        fields['site_id'] = state.site_id
        fields['warranty_start'] = state.warranty_start
        fields['warranty_end'] = state.warranty_end
    return fields
