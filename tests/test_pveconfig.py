"""Tests for VM config parsing and parameter building."""

import pytest

from pvesandbox.api.exceptions import InvalidArgumentError
from pvesandbox.models.vm import Status, VMConfig
from pvesandbox.utils.pveconfig import (
    agent_config_enabled,
    build_net0,
    config_params,
    format_cicustom,
    has_cloudinit_drive,
    normalize_config,
    normalize_snapshot_name,
    parse_config_output,
    parse_status_output,
    split_volume_id,
    volume_storage,
)


class TestParseConfigOutput:
    def test_values_keep_inner_colons(self):
        out = (
            "boot: order=scsi0;net0\n"
            "scsi0: local-zfs:vm-100-disk-0,discard=on,size=2.8G\n"
            "\n"
            "ide2: local-zfs:vm-100-cloudinit,media=cdrom\n"
            "garbage line\n"
        )
        config = parse_config_output(out)
        assert config["scsi0"] == "local-zfs:vm-100-disk-0,discard=on,size=2.8G"
        assert config["boot"] == "order=scsi0;net0"
        assert "garbage line" not in config
        assert len(config) == 3

    def test_normalize_config_stringifies_api_values(self):
        raw = {"cores": 2, "agent": "1", "balloon": 0.0, "onboot": True, "description": None}
        assert normalize_config(raw) == {
            "cores": "2",
            "agent": "1",
            "balloon": "0",
            "onboot": "true",
        }
        assert normalize_config(None) == {}


class TestAgentConfig:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("1", True),
            ("0", False),
            ("1,fstrim_cloned_disks=1", True),
            ("0,type=virtio", False),
            ("enabled=1", True),
            ("enabled=0", False),
            ("type=virtio,disabled=1", False),
            ("type=isa", True),
            (1, True),
            (0, False),
            (True, True),
            (False, False),
        ],
    )
    def test_values(self, value, expected):
        assert agent_config_enabled(value) is expected

    def test_empty_string_rejected(self):
        with pytest.raises(InvalidArgumentError):
            agent_config_enabled("  ")

    def test_unknown_type_rejected(self):
        with pytest.raises(InvalidArgumentError):
            agent_config_enabled(["1"])


class TestCloudInitDrive:
    def test_detects_cloudinit_volume(self):
        assert has_cloudinit_drive({"ide2": "local-lvm:vm-9000-cloudinit,media=cdrom"})

    def test_missing(self):
        assert not has_cloudinit_drive({"scsi0": "local-lvm:vm-9000-disk-0"})


class TestNet0:
    def test_defaults_to_virtio(self):
        assert build_net0("", "vmbr1", None, "") == "virtio,bridge=vmbr1"

    def test_all_options(self):
        assert (
            build_net0("virtio", "vmbr1", True, "agent_nat_default")
            == "virtio,bridge=vmbr1,firewall=1,fwgroup=agent_nat_default"
        )

    def test_firewall_off(self):
        assert build_net0("e1000", "", False, "") == "e1000,firewall=0"


class TestConfigParams:
    def test_only_set_fields(self):
        cfg = VMConfig(name="sandbox-1", cores=2, memory_mb=4096, cloud_init="local:snippets/a.yaml")
        assert config_params(cfg) == {
            "name": "sandbox-1",
            "cores": "2",
            "memory": "4096",
            "cicustom": "user=local:snippets/a.yaml",
        }

    def test_empty_config(self):
        assert config_params(VMConfig()) == {}

    def test_firewall_group_can_be_dropped(self):
        cfg = VMConfig(bridge="vmbr1", firewall=True, firewall_group="grp")
        assert config_params(cfg)["net0"] == "virtio,bridge=vmbr1,firewall=1,fwgroup=grp"
        assert config_params(cfg, include_firewall_group=False)["net0"] == (
            "virtio,bridge=vmbr1,firewall=1"
        )

    def test_cpu_pinning_and_scsihw(self):
        params = config_params(VMConfig(cpu_pinning="0-3", scsihw="virtio-scsi-single"))
        assert params == {"scsihw": "virtio-scsi-single", "cpulist": "0-3"}

    def test_cicustom_passthrough(self):
        assert format_cicustom("user=local:snippets/x.yaml") == "user=local:snippets/x.yaml"
        assert format_cicustom("local:snippets/x.yaml") == "user=local:snippets/x.yaml"


class TestVolumeIds:
    def test_split(self):
        assert split_volume_id(" local-zfs:vm-0-disk-1 ") == ("local-zfs", "vm-0-disk-1")

    @pytest.mark.parametrize("bad", ["", "local-zfs", ":disk", "local-zfs:", "  "])
    def test_malformed(self, bad):
        with pytest.raises(InvalidArgumentError):
            split_volume_id(bad)

    def test_volume_storage(self):
        assert volume_storage("tank:vol") == "tank"
        assert volume_storage("novolume") == ""


class TestSnapshotNames:
    def test_trimmed(self):
        assert normalize_snapshot_name("  base ") == "base"

    def test_empty_rejected(self):
        with pytest.raises(InvalidArgumentError, match="snapshot name is required"):
            normalize_snapshot_name("   ")


class TestStatusOutput:
    @pytest.mark.parametrize(
        "out,expected",
        [
            ("status: running\n", Status.RUNNING),
            ("status: stopped", Status.STOPPED),
            ("running", Status.RUNNING),
            ("status: paused", Status.UNKNOWN),
        ],
    )
    def test_parse(self, out, expected):
        assert parse_status_output(out) is expected

    def test_empty(self):
        with pytest.raises(InvalidArgumentError):
            parse_status_output("\n")
