"""Azure DevOps work item client.

Runs a WIQL query for work items of the configured type, filtered by state
and optionally by area path, and turns them into ``ExternalFeature`` values
for the feature catalog. Uses the Azure DevOps REST API directly (no SDK
dependency), authenticated with a personal access token.
"""

import html
import logging
import re
from collections.abc import Sequence
from typing import Any

import httpx

from ..core.config import Settings, get_settings
from ..services.feature_catalog import ExternalFeature

logger = logging.getLogger(__name__)

API_VERSION = "7.0"
UNCATEGORIZED_EPIC = "Uncategorized"
WORK_ITEM_FIELDS = (
    "System.Id",
    "System.Title",
    "System.Description",
    "System.State",
    "System.AreaPath",
    "System.Tags",
    "System.WorkItemType",
)
# The work items endpoint accepts at most 200 ids per call
BATCH_SIZE = 200
DEFAULT_STATES = ("Active",)
DESCRIPTION_MAX_LENGTH = 300


class AzureDevOpsError(Exception):
    """The Azure DevOps API call failed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


def _split_tags(raw: str | None) -> list[str]:
    return [tag.strip() for tag in (raw or "").split(";") if tag.strip()]


def derive_epic(tags: Sequence[str], area_path: str | None) -> str:
    """First tag, else the last area path segment, else ``Uncategorized``."""
    if tags:
        return tags[0]
    if area_path:
        segments = [s for s in area_path.split("\\") if s.strip()]
        if segments:
            return segments[-1].strip()
    return UNCATEGORIZED_EPIC


def plain_text(markup: str | None) -> str:
    """Drop HTML tags and entities and collapse whitespace."""
    text = re.sub(r"<[^>]+>", " ", markup or "")
    return re.sub(r"\s+", " ", html.unescape(text)).strip()


def truncate(text: str, max_length: int = DESCRIPTION_MAX_LENGTH) -> str:
    if len(text) <= max_length:
        return text
    return f"{text[:max_length - 3]}..."


def _quote(value: str) -> str:
    """WIQL string literal."""
    return "'" + value.replace("'", "''") + "'"


def work_item_url(organization: str, project: str, work_item_id: int | str) -> str:
    return f"https://dev.azure.com/{organization}/{project}/_workitems/edit/{work_item_id}"


def convert_work_items(
    items: Sequence[dict[str, Any]],
    organization: str,
    project: str,
    work_item_type: str = "Feature",
) -> list[ExternalFeature]:
    """Map raw work item payloads to ``ExternalFeature`` values."""
    features = []
    for item in items:
        fields = item.get("fields", {})
        item_id = item.get("id", fields.get("System.Id"))
        if item_id is None:
            logger.warning("Skipping Azure DevOps work item without an id")
            continue

        tags = _split_tags(fields.get("System.Tags"))
        area_path = fields.get("System.AreaPath")
        item_type = fields.get("System.WorkItemType") or work_item_type
        description = truncate(plain_text(fields.get("System.Description")))
        features.append(
            ExternalFeature(
                external_id=str(item_id),
                title=fields.get("System.Title") or f"{item_type} #{item_id}",
                url=work_item_url(organization, project, item_id),
                description=description or f"{item_type} #{item_id}",
                tags=tags,
                epic=derive_epic(tags, area_path),
                state=fields.get("System.State"),
                area_path=area_path,
            )
        )
    return features


class AzureDevOpsClient:
    """Fetches work items from one Azure DevOps project."""

    def __init__(
        self,
        organization: str,
        project: str,
        token: str,
        work_item_type: str = "Feature",
        states: Sequence[str] | None = None,
        area_path: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.organization = organization
        self.project = project
        self.token = token
        self.work_item_type = work_item_type
        self.states = [s.strip() for s in (states or DEFAULT_STATES) if s.strip()]
        self.area_path = (area_path or "").strip() or None
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        states: Sequence[str] | None = None,
        area_path: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "AzureDevOpsClient":
        """Client for the configured project; explicit filters override the settings."""
        settings = settings or get_settings()
        if not settings.azure_devops_enabled:
            raise AzureDevOpsError("Azure DevOps is not configured")
        return cls(
            organization=settings.azure_devops_organization,
            project=settings.azure_devops_project,
            token=settings.azure_devops_token,
            work_item_type=settings.azure_devops_work_item_type,
            states=states or settings.azure_devops_states,
            area_path=area_path or settings.azure_devops_area_path,
            timeout=settings.azure_devops_timeout_seconds,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return f"https://dev.azure.com/{self.organization}/{self.project}"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            auth=("", self.token),
            timeout=self.timeout,
            transport=self.transport,
            headers={"Accept": "application/json"},
        )

    def wiql_query(self) -> str:
        clauses = [f"[System.WorkItemType] = {_quote(self.work_item_type)}"]
        if len(self.states) == 1:
            clauses.append(f"[System.State] = {_quote(self.states[0])}")
        elif self.states:
            states = ", ".join(_quote(state) for state in self.states)
            clauses.append(f"[System.State] IN ({states})")
        if self.area_path:
            clauses.append(f"[System.AreaPath] UNDER {_quote(self.area_path)}")
        return "SELECT [System.Id] FROM WorkItems WHERE " + " AND ".join(clauses)

    async def fetch_features(self) -> list[ExternalFeature]:
        """Run the WIQL query and fetch every matching work item."""
        async with self._client() as client:
            result = await self._request(
                client,
                "POST",
                "/_apis/wit/wiql",
                params={"api-version": API_VERSION},
                json={"query": self.wiql_query()},
            )
            ids = [ref["id"] for ref in result.get("workItems", []) if "id" in ref]
            if not ids:
                logger.info(f"No matching {self.work_item_type} work items in {self.project}")
                return []

            items: list[dict[str, Any]] = []
            for start in range(0, len(ids), BATCH_SIZE):
                batch = ids[start:start + BATCH_SIZE]
                payload = await self._request(
                    client,
                    "GET",
                    "/_apis/wit/workitems",
                    params={
                        "ids": ",".join(str(i) for i in batch),
                        "fields": ",".join(WORK_ITEM_FIELDS),
                        "api-version": API_VERSION,
                    },
                )
                items.extend(payload.get("value", []))

        features = convert_work_items(
            items, self.organization, self.project, self.work_item_type
        )
        logger.info(f"Fetched {len(features)} work items from Azure DevOps {self.project}")
        return features

    async def _request(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> dict[str, Any]:
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.RequestError as e:
            logger.error(f"Azure DevOps request failed: {e}")
            raise AzureDevOpsError(f"Could not reach Azure DevOps: {e}") from e

        if not response.is_success:
            logger.error(
                f"Azure DevOps {method} {url} returned {response.status_code}: {response.text[:200]}"
            )
            raise AzureDevOpsError(
                f"Azure DevOps returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise AzureDevOpsError("Azure DevOps returned an invalid JSON body") from e
