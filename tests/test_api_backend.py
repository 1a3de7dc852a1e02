"""Tests for the REST API backend against a scripted Proxmox API."""

import asyncio

import pytest

from pvesandbox.api.exceptions import (
    APIError,
    GuestIPNotFoundError,
    InvalidArgumentError,
    InvalidTemplateError,
    StorageUnsupportedError,
    TaskFailedError,
    VMNotFoundError,
    VolumeNotFoundError,
)
from pvesandbox.backends.api import APIBackend, parse_snapshot_entries
from pvesandbox.backends.shell import ShellBackend
from pvesandbox.models.vm import Status, VMConfig

from conftest import UPID, FakeRunner, ScriptedAPI, no_sleep

NET0 = "virtio=52:54:00:aa:bb:cc,bridge=vmbr1"
LEASE_LINE = "1738159200 52:54:00:aa:bb:cc 10.77.0.55 host *\n"


def make_backend(api, tmp_path=None, **kwargs):
    lease_paths = [str(tmp_path / "dnsmasq.leases")] if tmp_path is not None else None
    kwargs.setdefault("node", "pve")
    kwargs.setdefault("sleep", no_sleep)
    return APIBackend(api.client(), dhcp_lease_paths=lease_paths, **kwargs)


def agent_payload(*addrs):
    return {
        "data": {
            "result": [
                {
                    "name": f"eth{i}",
                    "ip-addresses": [{"ip-address": a, "ip-address-type": "ipv4", "prefix": 24}],
                }
                for i, a in enumerate(addrs)
            ]
        }
    }


class TestClone:
    @pytest.mark.asyncio
    async def test_linked_clone_falls_back_to_full(self):
        api = ScriptedAPI(
            (500, {"errors": {"": "linked clone requires snapshot support"}}),
            (200, {"data": UPID}),
        )
        backend = make_backend(api)

        await backend.clone(9000, 101, "sandbox-101")

        assert [r.path for r in api.requests] == [
            "/api2/json/nodes/pve/qemu/9000/clone",
            "/api2/json/nodes/pve/qemu/9000/clone",
        ]
        assert api.requests[0].form["full"] == "0"
        assert api.requests[1].form == {"newid": "101", "full": "1", "name": "sandbox-101"}
        assert len(api.task_polls) == 1

    @pytest.mark.asyncio
    async def test_full_mode_does_not_retry(self):
        api = ScriptedAPI((500, {"errors": {"": "linked clone requires snapshot support"}}))
        backend = make_backend(api, clone_mode="full")

        with pytest.raises(APIError):
            await backend.clone(9000, 101, "")

        assert len(api.requests) == 1
        assert api.requests[0].form == {"newid": "101", "full": "1"}

    @pytest.mark.asyncio
    async def test_retry_failure_reports_both_errors(self):
        api = ScriptedAPI(
            (500, {"errors": {"": "linked clone requires snapshot support"}}),
            (500, {"message": "storage full"}),
        )
        with pytest.raises(APIError) as exc_info:
            await make_backend(api).clone(9000, 101, "")
        message = str(exc_info.value)
        assert "linked clone failed" in message
        assert "full clone retry failed" in message
        assert "storage full" in message

    @pytest.mark.asyncio
    async def test_missing_template(self):
        api = ScriptedAPI((500, {"message": "VM 9000 not found"}))
        with pytest.raises(VMNotFoundError):
            await make_backend(api).clone(9000, 101, "")

    @pytest.mark.asyncio
    async def test_failed_task(self):
        api = ScriptedAPI(
            (200, {"data": UPID}),
            (200, {"data": {"status": "stopped", "exitstatus": "clone failed"}}),
            tasks_from_queue=True,
        )
        with pytest.raises(TaskFailedError, match="clone failed"):
            await make_backend(api).clone(9000, 101, "")


class TestConfigure:
    @pytest.mark.asyncio
    async def test_firewall_group_retried_without_fwgroup(self):
        fwgroup_error = {
            "errors": {
                "net0.fwgroup": "property is not defined in schema and the schema "
                "does not allow additional properties"
            }
        }
        api = ScriptedAPI(
            (400, fwgroup_error),
            (200, {"data": None}),
        )
        cfg = VMConfig(bridge="vmbr1", firewall=True, firewall_group="agent_nat_default")

        await make_backend(api).configure(101, cfg)

        assert [r.method for r in api.requests] == ["PUT", "PUT"]
        assert api.requests[0].form["net0"] == (
            "virtio,bridge=vmbr1,firewall=1,fwgroup=agent_nat_default"
        )
        assert api.requests[1].form["net0"] == "virtio,bridge=vmbr1,firewall=1"
        assert "fwgroup=" not in api.requests[1].form["net0"]

    @pytest.mark.asyncio
    async def test_firewall_group_only_skips_empty_retry(self):
        api = ScriptedAPI(
            (400, {"errors": {"net0.fwgroup": "property is not defined in schema"}}),
            (
                200,
                {"data": {"bootdisk": "scsi0", "scsi0": "local-zfs:vm-101-disk-0,size=40G"}},
            ),
        )
        cfg = VMConfig(firewall_group="agent_nat_default", root_disk_gb=40)

        await make_backend(api).configure(101, cfg)

        assert [r.method for r in api.requests] == ["PUT", "GET"]
        assert api.requests[0].form == {"net0": "virtio,fwgroup=agent_nat_default"}

    @pytest.mark.asyncio
    async def test_resize_on_missing_vm(self):
        api = ScriptedAPI(
            (500, {"message": "Configuration file 'nodes/pve/qemu-server/404.conf' does not exist"})
        )
        with pytest.raises(VMNotFoundError, match="vm 404 not found"):
            await make_backend(api).configure(404, VMConfig(root_disk_gb=40))

    @pytest.mark.asyncio
    async def test_other_errors_not_retried(self):
        api = ScriptedAPI((400, {"errors": {"memory": "value must be at least 16"}}))
        cfg = VMConfig(memory_mb=8, firewall_group="grp", bridge="vmbr1")
        with pytest.raises(APIError, match="memory"):
            await make_backend(api).configure(101, cfg)
        assert len(api.requests) == 1

    @pytest.mark.asyncio
    async def test_root_disk_resize(self):
        api = ScriptedAPI(
            (
                200,
                {
                    "data": {
                        "bootdisk": "scsi0",
                        "scsi0": "local-zfs:vm-100-disk-0,discard=on,size=2.8G",
                    }
                },
            ),
            (200, {"data": UPID}),
        )

        await make_backend(api).configure(100, VMConfig(root_disk_gb=40))

        get_config, resize = api.requests
        assert get_config.method == "GET"
        assert get_config.path == "/api2/json/nodes/pve/qemu/100/config"
        assert resize.method == "PUT"
        assert resize.path == "/api2/json/nodes/pve/qemu/100/resize"
        assert resize.form == {"disk": "scsi0", "size": "+38G"}
        assert len(api.task_polls) == 1

    @pytest.mark.asyncio
    async def test_no_resize_when_large_enough(self):
        api = ScriptedAPI((200, {"data": {"scsi0": "local-zfs:vm-100-disk-0,size=40.5G"}}))
        await make_backend(api).configure(100, VMConfig(root_disk_gb=40))
        assert len(api.requests) == 1

    @pytest.mark.asyncio
    async def test_empty_config_issues_nothing(self):
        api = ScriptedAPI()
        await make_backend(api).configure(100, VMConfig())
        assert api.requests == []


class TestPowerAndStatus:
    @pytest.mark.asyncio
    async def test_start_waits_for_task(self):
        api = ScriptedAPI((200, {"data": UPID}))
        await make_backend(api).start(101)
        assert api.requests[0].path == "/api2/json/nodes/pve/qemu/101/status/start"
        assert len(api.task_polls) == 1

    @pytest.mark.asyncio
    async def test_destroy_purges(self):
        api = ScriptedAPI((200, {"data": UPID}))
        await make_backend(api).destroy(101)
        assert api.requests[0].method == "DELETE"
        assert api.requests[0].query == {"purge": "1"}

    @pytest.mark.asyncio
    async def test_status_and_stats(self):
        api = ScriptedAPI(
            (200, {"data": {"status": "running", "cpu": 0.25}}),
            (200, {"data": {"status": "running", "cpu": 0.25}}),
            (200, {"data": {"status": "paused"}}),
        )
        backend = make_backend(api)
        assert await backend.status(101) is Status.RUNNING
        assert (await backend.current_stats(101)).cpu_usage == 0.25
        assert await backend.status(101) is Status.UNKNOWN

    @pytest.mark.asyncio
    async def test_status_of_missing_vm(self):
        api = ScriptedAPI(
            (500, {"message": "Configuration file 'nodes/pve/qemu-server/101.conf' does not exist"})
        )
        with pytest.raises(VMNotFoundError):
            await make_backend(api).status(101)

    @pytest.mark.asyncio
    async def test_node_detected_once(self):
        api = ScriptedAPI(
            (200, {"data": [{"node": "pve2", "status": "online"}]}),
            (200, {"data": UPID}),
            (200, {"data": UPID}),
        )
        backend = make_backend(api, node="")
        await asyncio.gather(backend.start(101), backend.stop(101))
        assert api.requests[0].path == "/api2/json/nodes"
        assert sorted(r.path for r in api.requests[1:]) == [
            "/api2/json/nodes/pve2/qemu/101/status/start",
            "/api2/json/nodes/pve2/qemu/101/status/stop",
        ]


class TestSnapshots:
    @pytest.mark.asyncio
    async def test_create_is_disk_only(self):
        api = ScriptedAPI((200, {"data": UPID}))
        await make_backend(api).snapshot_create(101, " base ")
        assert api.requests[0].form == {"snapname": "base", "vmstate": "0"}

    @pytest.mark.asyncio
    async def test_empty_name_rejected_before_request(self):
        api = ScriptedAPI()
        with pytest.raises(InvalidArgumentError):
            await make_backend(api).snapshot_rollback(101, " ")
        assert api.requests == []

    @pytest.mark.asyncio
    async def test_list_skips_current(self):
        api = ScriptedAPI(
            (
                200,
                {
                    "data": [
                        {"name": "base", "description": "clean", "snaptime": 1738159200},
                        {"name": "current", "running": 1},
                    ]
                },
            )
        )
        snapshots = await make_backend(api).snapshot_list(101)
        assert [s.name for s in snapshots] == ["base"]
        assert snapshots[0].created_at.year == 2025

    def test_parse_entries_ignores_junk(self):
        assert parse_snapshot_entries(None) == []
        assert parse_snapshot_entries(["x", {"name": ""}]) == []


class TestGuestIp:
    @pytest.mark.asyncio
    async def test_selects_agent_address_in_cidr(self, tmp_path):
        api = ScriptedAPI(
            (200, {"data": {"net0": NET0}}),
            (200, agent_payload("192.168.1.10", "10.77.0.9")),
        )
        backend = make_backend(api, tmp_path, agent_cidr="10.77.0.0/16")

        assert await backend.guest_ip(101) == "10.77.0.9"
        assert api.requests[1].path == (
            "/api2/json/nodes/pve/qemu/101/agent/network-get-interfaces"
        )

    @pytest.mark.asyncio
    async def test_dhcp_lease_when_agent_not_running(self, tmp_path):
        lease_file = tmp_path / "dnsmasq.leases"
        lease_file.write_text("")
        sleeps = []

        async def sleep(seconds):
            sleeps.append(seconds)
            lease_file.write_text(LEASE_LINE)

        api = ScriptedAPI(
            (200, {"data": {"net0": NET0}}),
            (500, {"message": "QEMU guest agent is not running"}),
        )
        backend = make_backend(api, tmp_path, sleep=sleep)

        assert await backend.guest_ip(101) == "10.77.0.55"
        assert len(sleeps) == 1

    @pytest.mark.asyncio
    async def test_lease_checked_before_agent(self, tmp_path):
        (tmp_path / "dnsmasq.leases").write_text(LEASE_LINE)
        api = ScriptedAPI((200, {"data": {"net0": NET0}}))
        assert await make_backend(api, tmp_path).guest_ip(101) == "10.77.0.55"
        assert len(api.requests) == 1

    @pytest.mark.asyncio
    async def test_invalid_cidr_rejected_first(self):
        api = ScriptedAPI()
        with pytest.raises(InvalidArgumentError):
            await make_backend(api, agent_cidr="bogus").guest_ip(101)
        assert api.requests == []

    @pytest.mark.asyncio
    async def test_not_found_after_attempts(self, tmp_path):
        responses = [(200, {"data": {"net0": NET0}})]
        responses += [(500, {"message": "QEMU guest agent is not running"})] * 30
        api = ScriptedAPI(*responses)

        with pytest.raises(GuestIPNotFoundError, match="qemu-guest-agent"):
            await make_backend(api, tmp_path).guest_ip(101)


class TestValidateTemplate:
    @pytest.mark.asyncio
    async def test_valid(self):
        api = ScriptedAPI(
            (200, {"data": {"agent": "1", "ide2": "local-lvm:vm-9000-cloudinit,media=cdrom"}})
        )
        await make_backend(api).validate_template(9000)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "config,match",
        [
            ({"ide2": "local-lvm:vm-9000-cloudinit"}, "missing 'agent:'"),
            ({"agent": "0", "ide2": "local-lvm:vm-9000-cloudinit"}, "explicitly disabled"),
            ({"agent": "1", "scsi0": "local-lvm:vm-9000-disk-0"}, "cloud-init drive"),
        ],
    )
    async def test_invalid(self, config, match):
        api = ScriptedAPI((200, {"data": config}))
        with pytest.raises(InvalidTemplateError, match=match):
            await make_backend(api).validate_template(9000)

    @pytest.mark.asyncio
    async def test_missing(self):
        api = ScriptedAPI((500, {"message": "VM 9000 not found"}))
        with pytest.raises(VMNotFoundError, match="template VM 9000 does not exist"):
            await make_backend(api).validate_template(9000)


class TestVolumes:
    @pytest.mark.asyncio
    async def test_create_volume(self):
        api = ScriptedAPI((200, {"data": "local-zfs:vm-0-disk-1"}))
        volume_id = await make_backend(api).create_volume("local-zfs", "vm-0-disk-1", 10)
        assert volume_id == "local-zfs:vm-0-disk-1"
        assert api.requests[0].path == "/api2/json/nodes/pve/storage/local-zfs/content"
        assert api.requests[0].form == {"vmid": "0", "filename": "vm-0-disk-1", "size": "10G"}

    @pytest.mark.asyncio
    async def test_create_volume_validates(self):
        api = ScriptedAPI()
        with pytest.raises(InvalidArgumentError):
            await make_backend(api).create_volume("local-zfs", "data", 0)
        assert api.requests == []

    @pytest.mark.asyncio
    async def test_attach_and_detach(self):
        api = ScriptedAPI((200, {"data": UPID}), (200, {"data": None}))
        backend = make_backend(api)
        await backend.attach_volume(101, "local-zfs:vm-0-disk-1", "scsi1")
        await backend.detach_volume(101, "scsi1")
        assert api.requests[0].form == {"scsi1": "local-zfs:vm-0-disk-1"}
        assert api.requests[1].form == {"delete": "scsi1"}

    @pytest.mark.asyncio
    async def test_attach_missing_volume_is_not_vm_not_found(self):
        api = ScriptedAPI((500, {"message": "volume 'local-zfs:vm-0-disk-9' does not exist"}))
        with pytest.raises(APIError) as excinfo:
            await make_backend(api).attach_volume(101, "local-zfs:vm-0-disk-9", "scsi1")
        assert not isinstance(excinfo.value, VMNotFoundError)

    @pytest.mark.asyncio
    async def test_volume_info(self):
        api = ScriptedAPI((200, {"data": {"path": "/dev/zvol/rpool/data/vm-0-disk-1"}}))
        info = await make_backend(api).volume_info("local-zfs:vm-0-disk-1")
        assert info.storage == "local-zfs"
        assert info.path == "/dev/zvol/rpool/data/vm-0-disk-1"

    @pytest.mark.asyncio
    async def test_delete_missing_volume(self):
        api = ScriptedAPI((500, {"message": "volume does not exist"}))
        with pytest.raises(VolumeNotFoundError):
            await make_backend(api).delete_volume("local-zfs:vm-0-disk-9")

    @pytest.mark.asyncio
    async def test_snapshot_refused_on_lvm(self):
        api = ScriptedAPI((200, {"data": {"type": "lvm"}}))

        with pytest.raises(StorageUnsupportedError, match="requires zfs storage"):
            await make_backend(api).volume_snapshot_create("local-lvm:vm-0-disk-1", "snap1")

        assert len(api.requests) == 1
        assert api.requests[0].path == "/api2/json/nodes/pve/storage/local-lvm/status"

    @pytest.mark.asyncio
    async def test_clone_from_snapshot(self):
        api = ScriptedAPI((200, {"data": {"type": "zfspool"}}), (200, {"data": None}))
        await make_backend(api).volume_clone_from_snapshot(
            "local-zfs:vm-0-disk-1", "snap1", "local-zfs:vm-0-disk-2"
        )
        clone = api.requests[1]
        assert clone.path == (
            "/api2/json/nodes/pve/storage/local-zfs/content/local-zfs:vm-0-disk-1/clone"
        )
        assert clone.form == {"target": "local-zfs:vm-0-disk-2", "snapname": "snap1"}

    @pytest.mark.asyncio
    async def test_clone_across_storages_rejected(self):
        api = ScriptedAPI()
        with pytest.raises(StorageUnsupportedError, match="across storages"):
            await make_backend(api).volume_clone("local-zfs:a", "tank:b")
        assert api.requests == []

    @pytest.mark.asyncio
    async def test_shell_fallback_when_not_implemented(self):
        api = ScriptedAPI(
            (200, {"data": {"type": "zfspool"}}),
            (404, {"message": "not implemented"}),
        )
        runner = FakeRunner('[{"storage":"local-zfs","type":"zfspool"}]', "")
        shell = ShellBackend(runner=runner, node="pve")
        backend = make_backend(api, shell_fallback=shell)

        await backend.volume_snapshot_create("local-zfs:vm-0-disk-1", "snap1")

        assert len(api.requests) == 2
        assert runner.calls == [
            ["pvesm", "status", "--storage", "local-zfs", "--output-format", "json"],
            ["pvesm", "snapshot", "local-zfs:vm-0-disk-1", "snap1"],
        ]

    @pytest.mark.asyncio
    async def test_not_implemented_without_fallback(self):
        api = ScriptedAPI(
            (200, {"data": {"type": "zfspool"}}),
            (501, {"message": "not implemented"}),
        )
        with pytest.raises(APIError) as exc_info:
            await make_backend(api).volume_snapshot_delete("local-zfs:vm-0-disk-1", "snap1")
        assert exc_info.value.status_code == 501
