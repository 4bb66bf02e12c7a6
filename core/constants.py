"""
Core — Constants

Shared constants: audit actions, pagination limits, warehouse roles and
quantity precision.

@file core/constants.py
"""

from decimal import Decimal

# Audit actions (mirror AuditLog.ActionChoices values)
AUDIT_ACTION_CREATE = 'CREATE'
AUDIT_ACTION_UPDATE = 'UPDATE'
AUDIT_ACTION_SOFT_DELETE = 'SOFT_DELETE'
AUDIT_ACTION_STATUS_CHANGE = 'STATUS_CHANGE'

# Pagination
DEFAULT_PAGE_SIZE = 25
MAX_PAGE_SIZE = 200
HISTORY_PAGE_SIZE = 100

# Django auth groups allowed to move stock
ROLE_WAREHOUSE = 'WAREHOUSE'
ROLE_INSTALLER = 'INSTALLER'
ROLE_MANAGER = 'MANAGER'

STOCK_OPERATOR_ROLES = (ROLE_WAREHOUSE, ROLE_INSTALLER, ROLE_MANAGER)
STOCK_ADMIN_ROLES = (ROLE_WAREHOUSE, ROLE_MANAGER)

# Lot quantities are stored with two decimal places (cable in metres, etc.)
QUANTITY_DECIMAL_PLACES = 2
QUANTITY_STEP = Decimal('0.01')
MONEY_STEP = Decimal('0.01')

# Exclusive upper bounds matching the DecimalField precision of the columns
# (quantity max_digits=12, money max_digits=14, both with two decimals).
QUANTITY_LIMIT = Decimal(10) ** 10
MONEY_LIMIT = Decimal(10) ** 12
