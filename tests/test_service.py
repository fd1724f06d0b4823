"""
Tests for PowerPlatformService.

Covers token caching, request construction and response reshaping. The Web
API is simulated with httpx.MockTransport.
"""

import asyncio
import time
from unittest.mock import patch

import httpx
import pytest
from azure.core.credentials import AccessToken

from powerplatform_mcp.errors import AuthenticationError, PowerPlatformAPIError
from powerplatform_mcp.service import (
    PowerPlatformService,
    filter_lookup_name_attributes,
    filter_regarding_relationships,
    odata_query,
)

from conftest import ORG_URL, RecordingHandler

ACCOUNT_PATH = "/api/data/v9.2/EntityDefinitions(LogicalName='account')"


class TestAccessToken:
    """Tests for token acquisition and caching."""

    @pytest.mark.asyncio
    async def test_token_is_cached(self, make_service, credential):
        service, _ = make_service()

        first = await service.get_access_token()
        second = await service.get_access_token()

        assert first == second == "token-1"
        credential.get_token.assert_called_once_with(f"{ORG_URL}/.default")

    @pytest.mark.asyncio
    async def test_token_refreshed_within_five_minutes_of_expiry(self, make_service, credential):
        credential.get_token.side_effect = [
            AccessToken("token-1", int(time.time()) + 200),
            AccessToken("token-2", int(time.time()) + 3600),
        ]
        service, _ = make_service()

        assert await service.get_access_token() == "token-1"
        assert await service.get_access_token() == "token-2"
        assert credential.get_token.call_count == 2

    @pytest.mark.asyncio
    async def test_credential_failure_raises_authentication_error(self, make_service, credential):
        credential.get_token.side_effect = RuntimeError("invalid_client")
        service, _ = make_service()

        with pytest.raises(AuthenticationError, match="Authentication failed"):
            await service.get_access_token()

    @pytest.mark.asyncio
    async def test_empty_token_raises_authentication_error(self, make_service, credential):
        credential.get_token.return_value = AccessToken("", int(time.time()) + 3600)
        service, _ = make_service()

        with pytest.raises(AuthenticationError):
            await service.get_access_token()

    @pytest.mark.asyncio
    async def test_auth_failure_skips_http_request(self, make_service, credential):
        credential.get_token.side_effect = RuntimeError("invalid_client")
        service, handler = make_service({ACCOUNT_PATH: {}})

        with pytest.raises(AuthenticationError):
            await service.get_entity_metadata("account")

        assert handler.requests == []

    def test_default_credential_uses_client_secret(self, config):
        with patch("powerplatform_mcp.service.ClientSecretCredential") as credential_cls:
            PowerPlatformService(config)

        kwargs = credential_cls.call_args.kwargs
        assert kwargs["tenant_id"] == "tenant-id"
        assert kwargs["client_id"] == "client-id"
        assert kwargs["client_secret"] == "client-secret"


class TestMakeRequest:
    """Tests for the authenticated GET helper."""

    @pytest.mark.asyncio
    async def test_sends_bearer_and_odata_headers(self, make_service):
        service, handler = make_service({ACCOUNT_PATH: {"LogicalName": "account"}})

        await service.get_entity_metadata("account")

        request = handler.requests[0]
        assert request.method == "GET"
        assert request.headers["Authorization"] == "Bearer token-1"
        assert request.headers["Accept"] == "application/json"
        assert request.headers["OData-MaxVersion"] == "4.0"
        assert request.headers["OData-Version"] == "4.0"
        assert str(request.url).startswith(ORG_URL + "/api/data/v9.2/")

    @pytest.mark.asyncio
    async def test_http_error_raises_api_error(self, make_service):
        service, _ = make_service({ACCOUNT_PATH: {"error": {"message": "denied"}}}, status_code=403)

        with pytest.raises(PowerPlatformAPIError) as exc_info:
            await service.get_entity_metadata("account")

        assert exc_info.value.status_code == 403
        assert str(exc_info.value).startswith("PowerPlatform API request failed:")

    @pytest.mark.asyncio
    async def test_transport_error_raises_api_error(self, config, credential):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        service = PowerPlatformService(
            config, credential=credential, transport=httpx.MockTransport(handler)
        )

        with pytest.raises(PowerPlatformAPIError) as exc_info:
            await service.get_entity_metadata("account")

        assert exc_info.value.status_code is None
        assert "connection refused" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_token_reused_across_requests(self, make_service, credential):
        service, handler = make_service({ACCOUNT_PATH: {"LogicalName": "account"}})

        await service.get_entity_metadata("account")
        await service.get_entity_metadata("account")

        assert len(handler.requests) == 2
        credential.get_token.assert_called_once()


class TestEntityOperations:
    """Tests for endpoint construction and response reshaping."""

    @pytest.mark.asyncio
    async def test_entity_metadata_drops_privileges(self, make_service):
        service, handler = make_service({
            ACCOUNT_PATH: {
                "LogicalName": "account",
                "EntitySetName": "accounts",
                "Privileges": [{"Name": "prvReadAccount"}],
            }
        })

        metadata = await service.get_entity_metadata("account")

        assert handler.paths == [ACCOUNT_PATH]
        assert metadata == {"LogicalName": "account", "EntitySetName": "accounts"}

    @pytest.mark.asyncio
    async def test_entity_attributes_query_and_filter(self, make_service):
        names = [
            "accountid",
            "primarycontactid",
            "primarycontactidname",
            "primarycontactidyominame",
            "name",
            "owneridname",
            "owneridyominame",
            "createdbyname",
        ]
        service, handler = make_service({
            "/Attributes": {"value": [{"LogicalName": n} for n in names]},
        })

        attributes = await service.get_entity_attributes("account")

        request = handler.requests[0]
        assert request.url.path == ACCOUNT_PATH + "/Attributes"
        assert request.url.params["$select"] == "LogicalName"
        assert request.url.params["$filter"] == "AttributeType ne 'Virtual'"
        assert [a["LogicalName"] for a in attributes["value"]] == [
            "accountid",
            "primarycontactid",
            "primarycontactidyominame",
            "name",
            "owneridyominame",
            "createdbyname",
        ]

    @pytest.mark.asyncio
    async def test_entity_attribute(self, make_service):
        path = ACCOUNT_PATH + "/Attributes(LogicalName='name')"
        service, handler = make_service({path: {"LogicalName": "name", "MaxLength": 160}})

        attribute = await service.get_entity_attribute("account", "name")

        assert handler.paths == [path]
        assert attribute["MaxLength"] == 160

    @pytest.mark.asyncio
    async def test_entity_relationships_fetches_both_kinds(self, make_service):
        service, handler = make_service({
            "/OneToManyRelationships": {"value": [
                {"SchemaName": "account_contacts", "ReferencingAttribute": "parentcustomerid"},
                {"SchemaName": "Account_Tasks", "ReferencingAttribute": "regardingobjectid"},
            ]},
            "/ManyToManyRelationships": {"value": [
                {"SchemaName": "accountleads_association"},
            ]},
        })

        relationships = await service.get_entity_relationships("account")

        assert sorted(handler.paths) == sorted([
            ACCOUNT_PATH + "/OneToManyRelationships",
            ACCOUNT_PATH + "/ManyToManyRelationships",
        ])
        for request in handler.requests:
            assert "SchemaName" in request.url.params["$select"]
        assert [r["SchemaName"] for r in relationships["oneToMany"]["value"]] == ["account_contacts"]
        assert relationships["manyToMany"]["value"][0]["SchemaName"] == "accountleads_association"

    @pytest.mark.asyncio
    async def test_entity_relationships_requests_run_concurrently(self, make_service):
        service, _ = make_service()
        both_in_flight = asyncio.Event()
        endpoints = []

        async def request(endpoint):
            endpoints.append(endpoint)
            if len(endpoints) == 2:
                both_in_flight.set()
            # A sequential caller never issues the second request, so this times out
            await asyncio.wait_for(both_in_flight.wait(), timeout=1)
            return {"value": []}

        service.make_request = request

        relationships = await service.get_entity_relationships("account")

        assert len(endpoints) == 2
        assert relationships == {"oneToMany": {"value": []}, "manyToMany": {"value": []}}

    @pytest.mark.asyncio
    async def test_entity_many_to_one_relationships(self, make_service):
        service, handler = make_service({
            "/ManyToOneRelationships": {"value": [
                {"SchemaName": "business_unit_accounts", "ReferencedEntity": "businessunit"},
            ]},
        })

        many_to_one = await service.get_entity_many_to_one_relationships("account")

        request = handler.requests[0]
        assert request.url.path == ACCOUNT_PATH + "/ManyToOneRelationships"
        assert request.url.params["$select"].split(",")[:2] == ["SchemaName", "RelationshipType"]
        assert many_to_one["value"][0]["ReferencedEntity"] == "businessunit"

    @pytest.mark.asyncio
    async def test_global_option_set(self, make_service):
        path = "/api/data/v9.2/GlobalOptionSetDefinitions(Name='budgetstatus')"
        service, handler = make_service({path: {"Name": "budgetstatus"}})

        option_set = await service.get_global_option_set("budgetstatus")

        assert handler.paths == [path]
        assert option_set == {"Name": "budgetstatus"}

    @pytest.mark.asyncio
    async def test_get_record(self, make_service):
        record_id = "00000000-0000-0000-0000-000000000001"
        path = f"/api/data/v9.2/accounts({record_id})"
        service, handler = make_service({path: {"accountid": record_id, "name": "Contoso"}})

        record = await service.get_record("accounts", record_id)

        assert handler.paths == [path]
        assert record["name"] == "Contoso"

    @pytest.mark.asyncio
    async def test_query_records_encodes_filter_and_top(self, make_service):
        service, handler = make_service({"/accounts": {"value": [{"name": "Contoso"}]}})

        records = await service.query_records("accounts", "name eq 'Contoso & Co'", max_records=5)

        request = handler.requests[0]
        assert request.url.path == "/api/data/v9.2/accounts"
        assert request.url.params["$filter"] == "name eq 'Contoso & Co'"
        assert request.url.params["$top"] == "5"
        assert records["value"] == [{"name": "Contoso"}]

    @pytest.mark.asyncio
    async def test_query_records_default_top(self, make_service):
        service, handler = make_service({"/contacts": {"value": []}})

        await service.query_records("contacts", "statecode eq 0")

        assert handler.requests[0].url.params["$top"] == "50"


class TestReshapingHelpers:
    """Tests for the pure filtering helpers."""

    def test_lookup_name_filter_keeps_unpaired_names(self):
        attributes = [{"LogicalName": "fullname"}, {"LogicalName": "yomifullname"}]

        assert filter_lookup_name_attributes(attributes) == attributes

    def test_lookup_name_filter_handles_empty_list(self):
        assert filter_lookup_name_attributes([]) == []

    def test_regarding_filter_is_case_insensitive(self):
        relationships = [
            {"ReferencingAttribute": "RegardingObjectId"},
            {"ReferencingAttribute": None},
        ]

        assert filter_regarding_relationships(relationships) == [{"ReferencingAttribute": None}]

    def test_odata_query_encodes_like_uri_component(self):
        query = odata_query({"filter": "name eq 'A&B'", "top": 3})

        assert query == "$filter=name%20eq%20'A%26B'&$top=3"

    def test_odata_query_encodes_commas_outside_select(self):
        query = odata_query({"select": "name,createdon", "filter": "contains(name, 'x')"})

        assert query == "$select=name,createdon&$filter=contains(name%2C%20'x')"
