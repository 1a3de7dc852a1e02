"""Tests for the API client and token authentication."""

import httpx
import pytest

from pvesandbox.api.auth import AuthHandler
from pvesandbox.api.client import ProxmoxClient, normalize_base_url
from pvesandbox.api.exceptions import (
    APIError,
    AuthenticationError,
    ConfigError,
    NetworkError,
    PermissionError,
)

from conftest import TEST_TOKEN, ScriptedAPI


class TestAuthHandler:
    def test_token_header(self):
        headers = AuthHandler(TEST_TOKEN).get_token_headers()
        assert headers == {"Authorization": "PVEAPIToken=root@pam!ci=0000-secret"}

    @pytest.mark.parametrize("token", ["", "root@pam!ci", "=secret", "root@pam!ci= "])
    def test_malformed_token(self, token):
        with pytest.raises(ConfigError, match="USER@REALM!TOKENID=SECRET"):
            AuthHandler(token)

    def test_insecure_with_ca_rejected(self):
        with pytest.raises(ConfigError, match="cannot be combined"):
            AuthHandler(TEST_TOKEN, tls_insecure=True, tls_ca_path="/etc/ca.pem")

    def test_verify_modes(self):
        assert AuthHandler(TEST_TOKEN).ssl_verify() is True
        assert AuthHandler(TEST_TOKEN, tls_insecure=True).ssl_verify() is False

    def test_ca_bundle_without_certificates(self, tmp_path):
        bundle = tmp_path / "ca.pem"
        bundle.write_text("not a certificate\n")
        with pytest.raises(ConfigError, match="contains no certificates"):
            AuthHandler(TEST_TOKEN, tls_ca_path=str(bundle)).ssl_verify()

    def test_missing_ca_bundle(self, tmp_path):
        with pytest.raises(ConfigError, match="read CA bundle"):
            AuthHandler(TEST_TOKEN, tls_ca_path=str(tmp_path / "missing.pem")).ssl_verify()


class TestBaseUrl:
    @pytest.mark.parametrize(
        "url",
        ["https://pve:8006", "https://pve:8006/", "https://pve:8006/api2/json/"],
    )
    def test_normalized(self, url):
        assert normalize_base_url(url) == "https://pve:8006/api2/json"


class TestRequests:
    @pytest.mark.asyncio
    async def test_unwraps_data_and_sends_token(self):
        api = ScriptedAPI((200, {"data": [{"node": "pve"}]}))
        async with api.client() as client:
            assert await client.get_nodes() == [{"node": "pve"}]

        request = api.requests[0]
        assert request.path == "/api2/json/nodes"
        assert request.headers["authorization"] == "PVEAPIToken=root@pam!ci=0000-secret"

    @pytest.mark.asyncio
    async def test_form_encoded_body(self):
        api = ScriptedAPI((200, {"data": None}))
        async with api.client() as client:
            await client.update_vm_config("pve", 101, {"cores": "2", "name": "sb"})

        request = api.requests[0]
        assert request.method == "PUT"
        assert request.path == "/api2/json/nodes/pve/qemu/101/config"
        assert request.form == {"cores": "2", "name": "sb"}

    @pytest.mark.asyncio
    async def test_volume_id_keeps_colon_in_path(self):
        api = ScriptedAPI((200, {"data": {"path": "/dev/zvol/tank/vol"}}))
        async with api.client() as client:
            await client.get_storage_volume("pve", "local-zfs", "local-zfs:vm-0-disk-1")
        assert api.requests[0].path == (
            "/api2/json/nodes/pve/storage/local-zfs/content/local-zfs:vm-0-disk-1"
        )

    @pytest.mark.asyncio
    async def test_errors_map_in_message(self):
        api = ScriptedAPI((400, {"data": None, "errors": {"net0": "invalid format"}}))
        async with api.client() as client:
            with pytest.raises(APIError) as exc_info:
                await client.update_vm_config("pve", 101, {"net0": "bogus"})
        assert exc_info.value.status_code == 400
        assert "net0: invalid format" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_message_field(self):
        api = ScriptedAPI((500, {"message": "VM 101 not found\n"}))
        async with api.client() as client:
            with pytest.raises(APIError, match="VM 101 not found"):
                await client.get_vm_config("pve", 101)

    @pytest.mark.asyncio
    async def test_plain_text_body(self):
        api = ScriptedAPI((500, "internal failure"))
        async with api.client() as client:
            with pytest.raises(APIError, match="internal failure"):
                await client.get_nodes()

    @pytest.mark.asyncio
    async def test_unauthorized(self):
        api = ScriptedAPI((401, {"data": None}))
        async with api.client() as client:
            with pytest.raises(AuthenticationError):
                await client.get_nodes()

    @pytest.mark.asyncio
    async def test_forbidden(self):
        api = ScriptedAPI((403, {"data": None}))
        async with api.client() as client:
            with pytest.raises(PermissionError):
                await client.get_nodes()

    @pytest.mark.asyncio
    async def test_writes_are_not_retried(self, monkeypatch):
        calls = []

        def handler(request):
            calls.append(request.method)
            raise httpx.ConnectError("connection refused", request=request)

        async def no_sleep(_seconds):
            return None

        monkeypatch.setattr("pvesandbox.api.client.asyncio.sleep", no_sleep)
        client = ProxmoxClient(
            "https://pve.test:8006", TEST_TOKEN, transport=httpx.MockTransport(handler)
        )
        async with client:
            with pytest.raises(NetworkError):
                await client.vm_status_action("pve", 101, "start")
            with pytest.raises(NetworkError):
                await client.get_nodes()

        assert calls == ["POST", "GET", "GET", "GET"]
