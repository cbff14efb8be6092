"""Tests for CRM adapter lookup."""

import httpx
import pytest

from scribe_crm.integrations.crm import build_adapters, get_crm_adapter
from scribe_crm.integrations.crm.hubspot import HubSpotAdapter
from scribe_crm.integrations.crm.salesforce import SalesforceAdapter
from scribe_crm.integrations.domain import CRMProvider


def test_get_crm_adapter_by_tag(make_client, make_manager, settings) -> None:
    client, _ = make_client(lambda request: httpx.Response(200, json={}))
    manager = make_manager(client)

    assert isinstance(get_crm_adapter("hubspot", manager, settings, client), HubSpotAdapter)
    assert isinstance(
        get_crm_adapter(CRMProvider.SALESFORCE, manager, settings, client), SalesforceAdapter
    )


def test_unknown_provider(make_client, make_manager, settings) -> None:
    client, _ = make_client(lambda request: httpx.Response(200, json={}))

    with pytest.raises(ValueError):
        get_crm_adapter("pipedrive", make_manager(client), settings, client)


def test_build_adapters(make_client, make_manager, settings) -> None:
    client, _ = make_client(lambda request: httpx.Response(200, json={}))

    adapters = build_adapters(make_manager(client), settings, client)

    assert set(adapters) == {CRMProvider.HUBSPOT, CRMProvider.SALESFORCE}
    assert all(adapter.provider == provider for provider, adapter in adapters.items())
