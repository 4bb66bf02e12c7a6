"""
Inventory — Celery Tasks

Periodic stock reports.

@file inventory/tasks.py
"""

import logging

from celery import shared_task

logger = logging.getLogger('installstock')


@shared_task(name='inventory.report_low_stock')
def report_low_stock_task():
    """
    Log every active product whose free stock fell below its minimum level.
    Registered with Celery Beat, interval LOW_STOCK_CHECK_MINUTES.
    """
    from .services import StockQueryService

    products = list(StockQueryService.low_stock_products())
    for product in products:
        logger.warning(
            'Low stock: %s free=%s min=%s',
            product, product.free_stock, product.stock_min_level,
        )
    logger.info('report_low_stock_task completed: %d product(s) below minimum.', len(products))
    return {
        'low_stock_count': len(products),
        'product_ids': [str(product.pk) for product in products],
    }
