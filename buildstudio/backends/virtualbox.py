"""VirtualBox backend.

Only discovery is supported: VMs whose name carries the Build Studio prefix
are reported so they show up next to container nodes. Provisioning VMs is
not implemented; lifecycle verbs raise BackendNotImplemented.
"""

from __future__ import annotations

import re

from buildstudio.core.base import NodeBackend
from buildstudio.core.errors import BackendCommandError
from buildstudio.core.models import Node, NodeKind, NodeState, VirtualizationTechnology, utc_now

VM_PREFIX = "build-studio-"

# "build-studio-1234" {0b9f6e1c-2d3a-4b5c-8d7e-6f5a4b3c2d1e}
_VM_LINE = re.compile(r'^"(?P<name>[^"]+)"\s+\{(?P<uuid>[0-9a-fA-F-]+)\}\s*$')


def parse_vm_list(text: str) -> dict[str, str]:
    """Parse `VBoxManage list vms` output into a name -> uuid mapping."""
    vms: dict[str, str] = {}
    for line in text.splitlines():
        match = _VM_LINE.match(line.strip())
        if match:
            vms[match.group("name")] = match.group("uuid")
    return vms


class VirtualBoxBackend(NodeBackend):
    technology = VirtualizationTechnology.VIRTUALBOX
    kind = NodeKind.VM

    async def _list(self, what: str) -> dict[str, str]:
        try:
            output = await self.runner("VBoxManage", "list", what)
        except OSError as e:
            raise BackendCommandError(f"Failed to run VBoxManage: {e}") from e
        self.logger.log_backend_command(["VBoxManage", "list", what], output.returncode)
        if not output.ok:
            raise BackendCommandError(f"VBoxManage list {what} failed: {output.stderr.strip()}")
        return parse_vm_list(output.stdout)

    async def scan(self) -> list[Node]:
        all_vms = await self._list("vms")
        running = await self._list("runningvms")
        now = utc_now()
        return [
            Node(
                id=name[len(VM_PREFIX):],
                name=name,
                kind=NodeKind.VM,
                state=NodeState.ONLINE if vm_uuid in running.values() else NodeState.OFFLINE,
                platform="unknown",
                technology=VirtualizationTechnology.VIRTUALBOX,
                vm_id=vm_uuid,
                created_at=now,
                last_seen=now if vm_uuid in running.values() else None,
            )
            for name, vm_uuid in all_vms.items()
            if name.startswith(VM_PREFIX)
        ]
