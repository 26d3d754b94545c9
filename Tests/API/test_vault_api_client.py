# test_vault_api_client.py
#
#
# Imports
import json
#
# Third-Party Imports
import httpx
import pytest
#
# Local Imports
from birchvault.DB.Vault_Models import Folder, VaultItem
from birchvault.Utils.Time_Utils import parse_timestamp
from birchvault.vault_api.client import VaultAPIClient
from birchvault.vault_api.exceptions import (
    APIConnectionError,
    APIRequestError,
    APIResponseError,
    AuthenticationError,
)
from birchvault.vault_api.schemas import RemoteVaultItem
from birchvault.vault_api.utils import (
    build_list_params,
    extract_error_message,
    folder_to_payload,
    remote_item_to_local,
    vault_item_to_payload,
)
from conftest import ANON_KEY, BASE_URL, USER_EMAIL, USER_ID, USER_PASSWORD_HASH, make_session
#
#######################################################################################################################
#
# Functions:


def _client_for(handler) -> VaultAPIClient:
    return VaultAPIClient(BASE_URL, ANON_KEY, timeout=5.0, transport=httpx.MockTransport(handler))


# --- Auth ---

@pytest.mark.asyncio
async def test_authenticate_returns_session(api_client, backend):
    session = await api_client.authenticate(USER_EMAIL, USER_PASSWORD_HASH)

    assert session.user_id == USER_ID
    assert session.email == USER_EMAIL
    assert session.last_sync_at is None
    assert session.expires_at.endswith("Z")
    request = backend.requests[-1]
    assert request.url.path == "/auth/v1/token"
    assert request.url.params["grant_type"] == "password"
    assert request.headers["apikey"] == ANON_KEY
    assert "authorization" not in request.headers
    await api_client.close()


@pytest.mark.asyncio
async def test_authenticate_failure_carries_server_message(api_client):
    with pytest.raises(AuthenticationError, match="Invalid login credentials") as exc_info:
        await api_client.authenticate(USER_EMAIL, "wrong")
    assert exc_info.value.status_code == 400
    await api_client.close()


@pytest.mark.asyncio
async def test_refresh_session_keeps_last_sync(api_client, backend):
    session = make_session(last_sync_at="2024-01-01T00:00:00.000Z", refresh_token=backend.issue_refresh_token())

    refreshed = await api_client.refresh_session(session)

    assert refreshed.access_token != session.access_token
    assert refreshed.last_sync_at == "2024-01-01T00:00:00.000Z"
    assert backend.requests[-1].url.params["grant_type"] == "refresh_token"
    await api_client.close()


@pytest.mark.asyncio
async def test_refresh_with_stale_token_fails(api_client):
    with pytest.raises(AuthenticationError, match="Invalid Refresh Token"):
        await api_client.refresh_session(make_session(refresh_token="revoked"))
    await api_client.close()


@pytest.mark.asyncio
async def test_auth_response_with_expires_in_only():
    def handler(request):
        return httpx.Response(200, json={"access_token": "a", "refresh_token": "r", "expires_in": 60,
                                         "user": {"id": "u", "email": "e@x"}})

    client = _client_for(handler)
    session = await client.authenticate("e@x", "pw")
    assert parse_timestamp(session.expires_at) > parse_timestamp("2000-01-01T00:00:00Z")
    await client.close()


@pytest.mark.asyncio
async def test_malformed_token_response():
    client = _client_for(lambda request: httpx.Response(200, json={"unexpected": True}))
    with pytest.raises(APIResponseError, match="Malformed token response"):
        await client.authenticate("e@x", "pw")
    await client.close()


# --- Rows ---

@pytest.mark.asyncio
async def test_upsert_record_sends_merge_header_and_bearer(api_client, backend):
    payload = {"id": "i1", "user_id": USER_ID, "encrypted_data": "c", "type": "login",
               "folder_id": None, "deleted_at": None}

    await api_client.upsert_record("vault_items", payload, access_token="tok")

    request = backend.requests[-1]
    assert request.method == "POST"
    assert request.url.path == "/rest/v1/vault_items"
    assert request.headers["prefer"] == "resolution=merge-duplicates"
    assert request.headers["authorization"] == "Bearer tok"
    assert json.loads(request.content) == payload
    assert backend.tables["vault_items"]["i1"]["type"] == "login"
    await api_client.close()


@pytest.mark.asyncio
async def test_upsert_twice_is_idempotent(api_client, backend):
    payload = {"id": "i1", "user_id": USER_ID, "encrypted_data": "c", "type": "login"}
    await api_client.upsert_record("vault_items", payload, access_token="tok")
    await api_client.upsert_record("vault_items", payload, access_token="tok")
    assert len(backend.tables["vault_items"]) == 1
    await api_client.close()


@pytest.mark.asyncio
async def test_delete_record_uses_eq_filter(api_client, backend):
    backend.seed("folders", {"id": "f1", "user_id": USER_ID, "name": "Work"})

    await api_client.delete_record("folders", "f1", access_token="tok")

    request = backend.requests[-1]
    assert request.method == "DELETE"
    assert request.url.params["id"] == "eq.f1"
    assert backend.tables["folders"] == {}
    await api_client.close()


@pytest.mark.asyncio
async def test_list_records_filters_by_user_and_since(api_client, backend):
    backend.seed("vault_items", {"id": "old", "user_id": USER_ID, "encrypted_data": "x", "type": "login",
                                 "updated_at": "2024-01-01T00:00:00+00:00"})
    backend.seed("vault_items", {"id": "new", "user_id": USER_ID, "encrypted_data": "y", "type": "note",
                                 "updated_at": "2024-06-01T00:00:00.123456+00:00"})
    backend.seed("vault_items", {"id": "other-user", "user_id": "someone-else", "encrypted_data": "z",
                                 "type": "note"})

    everything = await api_client.list_vault_items(USER_ID, "tok")
    assert {i.id for i in everything} == {"old", "new"}

    recent = await api_client.list_vault_items(USER_ID, "tok", since="2024-03-01T00:00:00.000Z")
    assert [i.id for i in recent] == ["new"]
    assert recent[0].item_type == "note"
    assert backend.requests[-1].url.params["updated_at"] == "gt.2024-03-01T00:00:00.000Z"
    await api_client.close()


@pytest.mark.asyncio
async def test_list_folders(api_client, backend):
    backend.seed("folders", {"id": "f1", "user_id": USER_ID, "name": "Work"})
    folders = await api_client.list_folders(USER_ID, "tok")
    assert [f.name for f in folders] == ["Work"]
    await api_client.close()


@pytest.mark.asyncio
async def test_list_rejects_non_list_body():
    client = _client_for(lambda request: httpx.Response(200, json={"rows": []}))
    with pytest.raises(APIResponseError, match="Expected a list"):
        await client.list_records("folders", USER_ID, "tok")
    await client.close()


@pytest.mark.asyncio
async def test_list_rejects_malformed_rows():
    client = _client_for(lambda request: httpx.Response(200, json=[{"id": "x"}]))
    with pytest.raises(APIResponseError, match="Malformed vault_items row"):
        await client.list_vault_items(USER_ID, "tok")
    await client.close()


# --- Error mapping ---

@pytest.mark.asyncio
@pytest.mark.parametrize("status, body, expected", [
    (401, {"message": "JWT expired"}, AuthenticationError),
    (422, {"message": "bad column"}, APIRequestError),
    (500, {"message": "boom", "error": "internal"}, APIResponseError),
    (503, None, APIResponseError),
])
async def test_status_codes_map_to_exceptions(status, body, expected):
    def handler(request):
        if body is None:
            return httpx.Response(status, text="<html>unavailable</html>")
        return httpx.Response(status, json=body)

    client = _client_for(handler)
    with pytest.raises(expected):
        await client.upsert_record("vault_items", {"id": "x"}, access_token="tok")
    await client.close()


@pytest.mark.asyncio
async def test_response_error_keeps_status_and_message():
    client = _client_for(lambda request: httpx.Response(500, json={"message": "boom"}))
    with pytest.raises(APIResponseError) as exc_info:
        await client.delete_record("vault_items", "x", access_token="tok")
    assert exc_info.value.status_code == 500
    assert exc_info.value.message == "boom"
    assert exc_info.value.response_data == {"message": "boom"}
    await client.close()


@pytest.mark.asyncio
async def test_transport_error_maps_to_connection_error(api_client, backend):
    backend.offline = True
    with pytest.raises(APIConnectionError):
        await api_client.list_folders(USER_ID, "tok")
    await api_client.close()


@pytest.mark.asyncio
async def test_timeout_maps_to_connection_error():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    client = _client_for(handler)
    with pytest.raises(APIConnectionError):
        await client.list_folders(USER_ID, "tok")
    await client.close()


@pytest.mark.asyncio
async def test_non_json_success_body():
    client = _client_for(lambda request: httpx.Response(200, text="not json"))
    with pytest.raises(APIResponseError, match="Failed to decode JSON"):
        await client.list_records("folders", USER_ID, "tok")
    await client.close()


# --- Connectivity ---

@pytest.mark.asyncio
async def test_ping_counts_unauthorized_as_online(api_client, backend):
    assert await api_client.ping() is True
    assert backend.requests[-1].method == "HEAD"
    await api_client.close()


@pytest.mark.asyncio
@pytest.mark.parametrize("status, online", [(200, True), (401, True), (404, False), (500, False)])
async def test_ping_status_handling(status, online):
    client = _client_for(lambda request: httpx.Response(status))
    assert await client.ping() is online
    await client.close()


@pytest.mark.asyncio
async def test_ping_offline(api_client, backend):
    backend.offline = True
    assert await api_client.ping() is False
    await api_client.close()


# --- Mapping helpers ---

def test_vault_item_payload_uses_wire_names():
    item = VaultItem(id="i1", encrypted_data="c", item_type="card", folder_id="f1", is_favorite=True)
    payload = vault_item_to_payload(item, USER_ID)
    assert payload == {"id": "i1", "user_id": USER_ID, "encrypted_data": "c", "type": "card",
                       "folder_id": "f1", "deleted_at": None}


def test_remote_item_to_local_normalises_timestamps():
    remote = RemoteVaultItem(**{"id": "i1", "user_id": USER_ID, "encrypted_data": "c", "type": "login",
                                "deleted_at": "2024-02-02T10:00:00+00:00",
                                "updated_at": "2024-02-03T10:00:00.123456+00:00"})
    local = remote_item_to_local(remote, synced_at="2024-02-04T00:00:00.000Z")
    assert local.local_updated_at == "2024-02-03T10:00:00.123Z"
    assert local.server_updated_at == local.local_updated_at
    assert local.deleted_at == "2024-02-02T10:00:00.000Z"
    assert local.synced_at == "2024-02-04T00:00:00.000Z"
    assert local.is_favorite is False


def test_build_list_params():
    assert build_list_params("u1") == {"user_id": "eq.u1"}
    assert build_list_params("u1", "2024-01-01T00:00:00Z") == {
        "user_id": "eq.u1", "updated_at": "gt.2024-01-01T00:00:00.000Z"}


@pytest.mark.parametrize("body, expected", [
    ({"message": "m"}, "m"),
    ({"error": "invalid_grant", "error_description": "Bad creds"}, "Bad creds"),
    ({"msg": "short"}, "short"),
    ({"code": 42}, "fallback"),
    ("not a dict", "fallback"),
])
def test_extract_error_message(body, expected):
    assert extract_error_message(body, default="fallback") == expected


def test_folder_payload_omits_local_fields():
    payload = folder_to_payload(Folder(id="f1", name="Work", synced_at="x"), USER_ID)
    assert payload == {"id": "f1", "user_id": USER_ID, "name": "Work"}

#
# End of test_vault_api_client.py
#######################################################################################################################
