"""Shared fixtures: a scripted Proxmox API, a recording command runner."""

from __future__ import annotations

import json
from urllib.parse import parse_qsl

import httpx
import pytest

from pvesandbox.api.client import ProxmoxClient
from pvesandbox.api.exceptions import CommandError
from pvesandbox.utils.shell import CommandRunner, format_command

TEST_TOKEN = "root@pam!ci=0000-secret"
UPID = "UPID:pve:0000ABCD:00000001:65000000:qmclone:9000:root@pam:"


async def no_sleep(_seconds: float) -> None:
    return None


class RecordedRequest:
    """One request seen by the scripted API."""

    def __init__(self, request: httpx.Request) -> None:
        self.method = request.method
        self.path = request.url.path
        self.query = dict(request.url.params)
        body = request.content.decode() if request.content else ""
        self.form = dict(parse_qsl(body, keep_blank_values=True))
        self.headers = request.headers

    def __repr__(self) -> str:
        return f"<{self.method} {self.path} {self.form or self.query}>"


class ScriptedAPI:
    """Serve queued responses in order and record every request.

    Task status polls (``/tasks/.../status``) are answered with a stopped/OK
    status without consuming the queue unless ``tasks_from_queue`` is set.
    """

    def __init__(self, *responses: tuple[int, object], tasks_from_queue: bool = False) -> None:
        self.responses = list(responses)
        self.requests: list[RecordedRequest] = []
        self.task_polls: list[RecordedRequest] = []
        self.tasks_from_queue = tasks_from_queue

    def __call__(self, request: httpx.Request) -> httpx.Response:
        recorded = RecordedRequest(request)
        if "/tasks/" in recorded.path and not self.tasks_from_queue:
            self.task_polls.append(recorded)
            return httpx.Response(200, json={"data": {"status": "stopped", "exitstatus": "OK"}})
        self.requests.append(recorded)
        if not self.responses:
            raise AssertionError(f"unexpected request {recorded!r}")
        status, body = self.responses.pop(0)
        if isinstance(body, str):
            return httpx.Response(status, text=body)
        return httpx.Response(status, content=json.dumps(body).encode())

    def client(self) -> ProxmoxClient:
        return ProxmoxClient(
            "https://pve.test:8006",
            TEST_TOKEN,
            transport=httpx.MockTransport(self),
        )


class FakeRunner(CommandRunner):
    """Return canned outputs in order and record the argv of every call."""

    def __init__(self, *outputs: str | Exception) -> None:
        self.outputs = list(outputs)
        self.calls: list[list[str]] = []

    async def run(self, name: str, *args: str) -> str:
        self.calls.append([name, *args])
        if not self.outputs:
            raise AssertionError(f"unexpected command {format_command([name, *args])}")
        out = self.outputs.pop(0)
        if isinstance(out, Exception):
            raise out
        return out


def command_error(stderr: str, command: str = "qm") -> CommandError:
    return CommandError(command, "exit status 2", stderr, returncode=2)


@pytest.fixture
def isolated_home(tmp_path, monkeypatch):
    """Point the config directory and age identity at a temp directory."""
    config_dir = tmp_path / "config"
    monkeypatch.setattr("pvesandbox.config.manager.DEFAULT_CONFIG_DIR", config_dir)
    monkeypatch.setattr("pvesandbox.crypto.IDENTITY_FILE", config_dir / ".age-identity")
    return config_dir
