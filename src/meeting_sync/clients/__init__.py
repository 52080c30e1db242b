"""API clients for the origin (Attio) and target (HubSpot) systems."""

from .attio_client import AttioClient
from .http import ApiClient, RetryPolicy, exhaust_pages, run_in_batches
from .hubspot_client import HubSpotClient

__all__ = [
    'ApiClient',
    'AttioClient',
    'HubSpotClient',
    'RetryPolicy',
    'exhaust_pages',
    'run_in_batches',
]
