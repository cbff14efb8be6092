"""CRM adapters (HubSpot, Salesforce) behind a common interface."""

from scribe_crm.integrations.crm.base import CRMAdapter
from scribe_crm.integrations.crm.hubspot import HubSpotAdapter
from scribe_crm.integrations.crm.registry import build_adapters, get_crm_adapter
from scribe_crm.integrations.crm.salesforce import SalesforceAdapter

__all__ = [
    "CRMAdapter",
    "HubSpotAdapter",
    "SalesforceAdapter",
    "build_adapters",
    "get_crm_adapter",
]
