"""
Work item lookups used by the change-set aggregator.
Items are fetched fresh on every call; nothing is cached.
"""
import logging
from typing import Dict, Any

from ingest.client import AzureDevOpsClient

logger = logging.getLogger(__name__)


class TicketsClient:
    """Resolves work item ids or URLs to fully populated work items."""

    def __init__(self, client: AzureDevOpsClient):
        self.client = client

    def get_work_item(self, project: str, work_item_id) -> Dict[str, Any]:
        url = f"{self.client.org_url}{project}/_apis/wit/workitems/{work_item_id}"
        return self.client.fetch_json(url, params={'$expand': 'All'})

    def get_work_item_by_url(self, url: str) -> Dict[str, Any]:
        sep = '&' if '?' in url else '?'
        return self.client.fetch_json(f"{url}{sep}$expand=All")
