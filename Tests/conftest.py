# conftest.py
# Shared fixtures: a temporary vault store and a scripted in-memory backend.
#
# Imports
import asyncio
import json
import time
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional, Set
#
# Third-Party Imports
import httpx
import pytest
#
# Local Imports
from birchvault.DB.Vault_DB import VaultDB
from birchvault.DB.Vault_Models import UserSession
from birchvault.Sync.Session_Manager import SessionManager
from birchvault.Sync.Sync_Engine import SyncEngine
from birchvault.Utils.Time_Utils import format_utc_timestamp, parse_timestamp
from birchvault.vault_api.client import VaultAPIClient
#
#######################################################################################################################
#
# Functions:

BASE_URL = "https://vault.test"
ANON_KEY = "anon-test-key"
USER_ID = "user-1"
USER_EMAIL = "alice@example.com"
USER_PASSWORD_HASH = "pw-hash"


class FakeBackend:
    """
    In-memory stand-in for the REST backend, served through httpx.MockTransport.

    Knobs:
        offline: every request raises httpx.ConnectError.
        fail_record_ids: upserts/deletes of these ids answer 500.
        fail_tables_on_get: list requests on these tables answer 500.
        gate: when set to an asyncio.Event, REST requests wait on it before answering.
    """

    def __init__(self):
        self.tables: Dict[str, Dict[str, dict]] = {"vault_items": {}, "folders": {}}
        self.requests: List[httpx.Request] = []
        self.users = {USER_EMAIL: {"password": USER_PASSWORD_HASH, "id": USER_ID}}
        self.refresh_tokens: Dict[str, str] = {}
        self.expires_in = 3600
        self.offline = False
        self.fail_record_ids: Set[str] = set()
        self.fail_tables_on_get: Set[str] = set()
        self.gate: Optional[asyncio.Event] = None

    # --- helpers for tests ---
    @staticmethod
    def server_now() -> str:
        # The backend reports microseconds and a +00:00 offset.
        return datetime.now(timezone.utc).isoformat()

    def seed(self, table: str, row: dict) -> dict:
        now = self.server_now()
        stored = {"created_at": now, "updated_at": now, **row}
        self.tables[table][stored["id"]] = stored
        return stored

    def issue_refresh_token(self, user_id: str = USER_ID) -> str:
        token = f"refresh-{uuid.uuid4()}"
        self.refresh_tokens[token] = user_id
        return token

    def rest_requests(self, method: Optional[str] = None) -> List[httpx.Request]:
        return [r for r in self.requests
                if r.url.path.startswith("/rest/v1/") and r.url.path != "/rest/v1/"
                and (method is None or r.method == method)]

    # --- transport ---
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.offline:
            raise httpx.ConnectError("network unreachable", request=request)
        if request.headers.get("apikey") != ANON_KEY:
            return httpx.Response(401, json={"message": "No API key found in request"})

        path = request.url.path
        if path == "/auth/v1/token":
            return self._token(request)
        if path == "/rest/v1/" and request.method == "HEAD":
            return httpx.Response(401 if "authorization" not in request.headers else 200)
        if path.startswith("/rest/v1/"):
            if self.gate is not None:
                await self.gate.wait()
            return self._rest(request, path[len("/rest/v1/"):])
        return httpx.Response(404, json={"message": "not found"})

    def _auth_payload(self, user_id: str, email: str) -> dict:
        return {
            "access_token": f"access-{uuid.uuid4()}",
            "refresh_token": self.issue_refresh_token(user_id),
            "expires_at": int(time.time()) + self.expires_in,
            "token_type": "bearer",
            "user": {"id": user_id, "email": email},
        }

    def _token(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content or b"{}")
        grant_type = request.url.params.get("grant_type")
        if grant_type == "password":
            user = self.users.get(body.get("email"))
            if not user or user["password"] != body.get("password"):
                return httpx.Response(400, json={"error": "invalid_grant",
                                                 "error_description": "Invalid login credentials"})
            return httpx.Response(200, json=self._auth_payload(user["id"], body["email"]))
        if grant_type == "refresh_token":
            user_id = self.refresh_tokens.pop(body.get("refresh_token"), None)
            if user_id is None:
                return httpx.Response(400, json={"error": "invalid_grant",
                                                 "error_description": "Invalid Refresh Token: Not Found"})
            email = next((e for e, u in self.users.items() if u["id"] == user_id), "")
            return httpx.Response(200, json=self._auth_payload(user_id, email))
        return httpx.Response(400, json={"error": "unsupported_grant_type"})

    def _rest(self, request: httpx.Request, table: str) -> httpx.Response:
        if table not in self.tables:
            return httpx.Response(404, json={"message": f"relation {table} does not exist"})
        if not request.headers.get("authorization", "").startswith("Bearer "):
            return httpx.Response(401, json={"message": "JWT required"})
        rows = self.tables[table]

        if request.method == "POST":
            body = json.loads(request.content)
            if body["id"] in self.fail_record_ids:
                return httpx.Response(500, json={"message": "upsert failed", "error": "internal"})
            if request.headers.get("prefer") != "resolution=merge-duplicates" and body["id"] in rows:
                return httpx.Response(409, json={"message": "duplicate key value"})
            now = self.server_now()
            existing = rows.get(body["id"], {"created_at": now})
            rows[body["id"]] = {**existing, **body, "updated_at": now}
            return httpx.Response(201)

        if request.method == "DELETE":
            record_id = request.url.params.get("id", "").removeprefix("eq.")
            if record_id in self.fail_record_ids:
                return httpx.Response(500, json={"message": "delete failed"})
            rows.pop(record_id, None)
            return httpx.Response(204)

        if request.method == "GET":
            if table in self.fail_tables_on_get:
                return httpx.Response(500, json={"message": "list failed"})
            user_id = request.url.params.get("user_id", "").removeprefix("eq.")
            since = request.url.params.get("updated_at")
            result = [r for r in rows.values() if r.get("user_id") == user_id]
            if since:
                cutoff = parse_timestamp(since.removeprefix("gt."))
                result = [r for r in result if parse_timestamp(r["updated_at"]) > cutoff]
            return httpx.Response(200, json=result)

        return httpx.Response(405, json={"message": "method not allowed"})


def make_session(expires_in_seconds: int = 3600, last_sync_at: Optional[str] = None,
                 refresh_token: str = "refresh-unknown") -> UserSession:
    return UserSession(
        user_id=USER_ID,
        email=USER_EMAIL,
        access_token="access-initial",
        refresh_token=refresh_token,
        expires_at=format_utc_timestamp(datetime.now(timezone.utc) + timedelta(seconds=expires_in_seconds)),
        last_sync_at=last_sync_at,
    )


# --- Fixtures ---

@pytest.fixture
def db_path(tmp_path) -> Path:
    return tmp_path / "vault_test.db"


@pytest.fixture
def db(db_path):
    """A fresh file-backed store per test."""
    instance = VaultDB(db_path)
    yield instance
    instance.close_connection()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def api_client(backend) -> VaultAPIClient:
    return VaultAPIClient(BASE_URL, ANON_KEY, timeout=5.0, transport=backend.transport())


@pytest.fixture
def session_manager(db, api_client) -> SessionManager:
    return SessionManager(db, api_client)


@pytest.fixture
def engine(db, api_client, session_manager) -> SyncEngine:
    return SyncEngine(db, api_client, session_manager, call_timeout=5.0)


@pytest.fixture
def logged_in(db, backend) -> UserSession:
    """Persists a valid session whose refresh token the backend knows."""
    session = make_session(refresh_token=backend.issue_refresh_token())
    db.save_session(session)
    return session

#
# End of conftest.py
#######################################################################################################################
