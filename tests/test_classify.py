"""Tests for remote error classification."""

import pytest

from pvesandbox.api.classify import (
    is_guest_agent_not_running,
    is_not_implemented,
    is_unsupported_fwgroup_error,
    is_vm_not_found,
    is_volume_not_found,
    should_retry_full_clone,
)
from pvesandbox.api.exceptions import APIError, CommandError


class TestVMNotFound:
    @pytest.mark.parametrize(
        "text",
        [
            "Configuration file 'nodes/pve/qemu-server/123.conf' does not exist",
            "no such VM ('123')",
            "VM 123 not found",
        ],
    )
    def test_matches(self, text):
        assert is_vm_not_found(APIError(text, 500))

    def test_command_error_stderr(self):
        err = CommandError("qm stop 123", "exit status 2", "VM 123 not found")
        assert is_vm_not_found(err)

    def test_unrelated(self):
        assert not is_vm_not_found("permission denied")
        assert not is_vm_not_found(None)


class TestVolumeNotFound:
    def test_matches(self):
        assert is_volume_not_found("volume 'local-zfs:vm-0-disk-9' does not exist")
        assert is_volume_not_found("no such volume")

    def test_unrelated(self):
        assert not is_volume_not_found("storage 'tank' is not online")


class TestFullCloneRetry:
    @pytest.mark.parametrize(
        "text",
        [
            "linked clone requires snapshot support",
            "storage 'local' does not support snapshots",
            "cannot do snapshot based clone",
        ],
    )
    def test_matches(self, text):
        assert should_retry_full_clone(text)

    def test_unrelated(self):
        assert not should_retry_full_clone("VM 9000 not found")


class TestFwgroup:
    def test_field_name_in_message(self):
        assert is_unsupported_fwgroup_error(
            "API error (status 400): net0.fwgroup: property is not defined in schema"
        )

    def test_schema_phrase(self):
        assert is_unsupported_fwgroup_error(
            "parameter verification failed: schema does not allow additional properties"
        )

    def test_unrelated(self):
        assert not is_unsupported_fwgroup_error("memory: value must be at least 16")


class TestAgentAndNotImplemented:
    def test_agent_not_running(self):
        assert is_guest_agent_not_running("QEMU guest agent is not running")
        assert not is_guest_agent_not_running("timeout")

    def test_not_implemented(self):
        assert is_not_implemented(APIError("API error (status 501): Method not implemented", 501))
        assert is_not_implemented("snapshot not supported on this storage")
        assert not is_not_implemented("permission denied")
