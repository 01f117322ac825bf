"""
Tests for the Azure DevOps work item client.

These tests verify:
1. CONVERSION: tags, area path, HTML descriptions and missing fields
2. FETCH: filtered WIQL query then batched work item reads, with PAT auth
3. ERRORS: transport and HTTP failures surface as AzureDevOpsError
"""

import base64

import httpx
import pytest

from feature_voting.core.config import Settings
from feature_voting.integrations.azure_devops import (
    API_VERSION,
    BATCH_SIZE,
    DESCRIPTION_MAX_LENGTH,
    UNCATEGORIZED_EPIC,
    AzureDevOpsClient,
    AzureDevOpsError,
    convert_work_items,
    derive_epic,
    plain_text,
)


def work_item(item_id: int, **fields) -> dict:
    return {"id": item_id, "fields": {"System.Id": item_id, **fields}}


def make_client(handler) -> AzureDevOpsClient:
    return AzureDevOpsClient(
        organization="acme",
        project="shop",
        token="s3cret",
        transport=httpx.MockTransport(handler),
    )


# =============================================================================
# TEST: CONVERSION
# =============================================================================


class TestConversion:
    """Raw payloads to ExternalFeature values."""

    def test_derive_epic(self):
        assert derive_epic(["Payments", "Q3"], "Shop\\Checkout") == "Payments"
        assert derive_epic([], "Shop\\Checkout\\Wallet") == "Wallet"
        assert derive_epic([], None) == UNCATEGORIZED_EPIC

    def test_convert_work_items(self):
        items = [
            work_item(
                101,
                **{
                    "System.Title": "Gift cards",
                    "System.Description": "<p>Sell gift cards</p>",
                    "System.State": "Active",
                    "System.AreaPath": "Shop\\Checkout",
                    "System.Tags": "Payments; Q3",
                },
            ),
            work_item(102, **{"System.Title": "Wishlist"}),
        ]

        first, second = convert_work_items(items, "acme", "shop")

        assert first.external_id == "101"
        assert first.tags == ["Payments", "Q3"]
        assert first.epic == "Payments"
        assert first.url == "https://dev.azure.com/acme/shop/_workitems/edit/101"
        assert second.description == "Feature #102"
        assert second.epic == UNCATEGORIZED_EPIC

    def test_description_is_plain_text(self):
        (feature,) = convert_work_items(
            [work_item(7, **{"System.Description": "<div><b>Rich</b>&nbsp;text &amp; more</div>"})],
            "acme",
            "shop",
        )

        assert "<" not in feature.description
        assert feature.description == "Rich text & more"

    def test_long_description_is_truncated(self):
        (feature,) = convert_work_items(
            [work_item(8, **{"System.Description": f"<p>{'word ' * 200}</p>"})],
            "acme",
            "shop",
        )

        assert len(feature.description) == DESCRIPTION_MAX_LENGTH
        assert feature.description.endswith("...")

    def test_plain_text_of_nothing(self):
        assert plain_text(None) == ""
        assert plain_text("<br/>") == ""

    def test_items_without_id_are_skipped(self):
        assert convert_work_items([{"fields": {}}], "acme", "shop") == []


# =============================================================================
# TEST: FETCH
# =============================================================================


class TestFetch:
    """Requests made against a mocked Azure DevOps."""

    async def test_fetch_features(self):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if request.method == "POST":
                return httpx.Response(200, json={"workItems": [{"id": 101}, {"id": 102}]})
            return httpx.Response(
                200,
                json={
                    "value": [
                        work_item(101, **{"System.Title": "Gift cards"}),
                        work_item(102, **{"System.Title": "Wishlist"}),
                    ]
                },
            )

        features = await make_client(handler).fetch_features()

        assert [f.title for f in features] == ["Gift cards", "Wishlist"]
        wiql, items = requests
        assert wiql.url.path == "/acme/shop/_apis/wit/wiql"
        assert wiql.url.params["api-version"] == API_VERSION
        assert b"'Feature'" in wiql.content
        assert items.url.params["ids"] == "101,102"
        expected = base64.b64encode(b":s3cret").decode()
        assert wiql.headers["Authorization"] == f"Basic {expected}"

    def test_query_defaults_to_active_items(self):
        query = AzureDevOpsClient(organization="acme", project="shop", token="s3cret").wiql_query()

        assert query == (
            "SELECT [System.Id] FROM WorkItems "
            "WHERE [System.WorkItemType] = 'Feature' AND [System.State] = 'Active'"
        )

    def test_query_filters_by_states_and_area_path(self):
        client = AzureDevOpsClient(
            organization="acme",
            project="shop",
            token="s3cret",
            states=["New", "Active", "Won't Fix"],
            area_path="Shop\\Checkout",
        )

        query = client.wiql_query()

        assert "[System.State] IN ('New', 'Active', 'Won''t Fix')" in query
        assert query.endswith("AND [System.AreaPath] UNDER 'Shop\\Checkout'")

    async def test_large_result_is_batched(self):
        calls: list[list[str]] = []
        ids = list(range(1, BATCH_SIZE + 6))

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(200, json={"workItems": [{"id": i} for i in ids]})
            batch = request.url.params["ids"].split(",")
            calls.append(batch)
            return httpx.Response(200, json={"value": [work_item(int(i)) for i in batch]})

        features = await make_client(handler).fetch_features()

        assert [len(batch) for batch in calls] == [BATCH_SIZE, 5]
        assert len(features) == len(ids)

    async def test_no_matches(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"workItems": []})

        assert await make_client(handler).fetch_features() == []


# =============================================================================
# TEST: ERRORS
# =============================================================================


class TestErrors:
    """Failures from the tracker."""

    async def test_http_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, text="unauthorized")

        with pytest.raises(AzureDevOpsError) as exc_info:
            await make_client(handler).fetch_features()

        assert exc_info.value.status_code == 401

    async def test_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(AzureDevOpsError):
            await make_client(handler).fetch_features()

    def test_not_configured(self):
        settings = Settings(_env_file=None, AZURE_DEVOPS_ORGANIZATION="acme")

        with pytest.raises(AzureDevOpsError):
            AzureDevOpsClient.from_settings(settings)

    def test_from_settings(self):
        settings = Settings(
            _env_file=None,
            AZURE_DEVOPS_ORGANIZATION="acme",
            AZURE_DEVOPS_PROJECT="shop",
            AZURE_DEVOPS_TOKEN="s3cret",
            AZURE_DEVOPS_WORK_ITEM_TYPE="User Story",
            AZURE_DEVOPS_STATES="New,Active",
        )

        client = AzureDevOpsClient.from_settings(settings)

        assert client.base_url == "https://dev.azure.com/acme/shop"
        assert "'User Story'" in client.wiql_query()
        assert "[System.State] IN ('New', 'Active')" in client.wiql_query()
