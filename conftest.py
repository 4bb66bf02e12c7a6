"""
InstallStock — Root conftest for pytest

Shared fixtures available to all test modules.

@file conftest.py
"""

import uuid

import pytest
from rest_framework.test import APIClient

from core.constants import ROLE_INSTALLER, ROLE_WAREHOUSE
from tests.factories import OperatorFactory, SuperuserFactory, UserFactory


@pytest.fixture
def api_client():
    """Unauthenticated DRF test client."""
    return APIClient()


@pytest.fixture
def user(db):
    """Active user without any warehouse role (read-only access)."""
    return UserFactory()


@pytest.fixture
def admin_user(db):
    """Superuser with default password TestPass2026!"""
    return SuperuserFactory()


@pytest.fixture
def warehouse_user(db):
    """Member of the WAREHOUSE group: may move, scrap and correct stock."""
    return OperatorFactory(role=ROLE_WAREHOUSE)


@pytest.fixture
def installer_user(db):
    """Member of the INSTALLER group: may move stock, not write it off."""
    return OperatorFactory(role=ROLE_INSTALLER)


@pytest.fixture
def authenticated_client(api_client, user):
    """API client authenticated as a regular user."""
    api_client.force_authenticate(user=user)
    return api_client


@pytest.fixture
def admin_client(api_client, admin_user):
    """API client authenticated as a superuser."""
    api_client.force_authenticate(user=admin_user)
    return api_client


@pytest.fixture
def warehouse_client(api_client, warehouse_user):
    api_client.force_authenticate(user=warehouse_user)
    return api_client


@pytest.fixture
def installer_client(api_client, installer_user):
    api_client.force_authenticate(user=installer_user)
    return api_client


@pytest.fixture
def site_id():
    """An installation site reference."""
    return uuid.uuid4()


@pytest.fixture
def document_id():
    """A sales document (invoice) reference."""
    return uuid.uuid4()
