"""libvirt network provisioning for kickstart-vm-runner."""

from __future__ import annotations

import os
import tempfile
from typing import Iterable, Optional, Tuple
from xml.etree.ElementTree import Element, SubElement, register_namespace, tostring

from ksrunner.constants import (
    DNSMASQ_NS,
    DNSMASQ_OPTIONS,
    LIBVIRT_URI,
    NETWORK_BRIDGE_MAC,
    NETWORK_DHCP_RANGE,
    NETWORK_GATEWAY,
    NETWORK_HOSTS,
    NETWORK_NAME,
    NETWORK_NAT_PORTS,
    NETWORK_NETMASK,
    NETWORK_UUID,
)
from ksrunner.exceptions import NetworkFailure
from ksrunner.utils import CommandRunner, log

register_namespace("dnsmasq", DNSMASQ_NS)


def _element_to_str(root: Element) -> str:
    """Serialize an ElementTree element to a pretty-printed XML string without declaration."""
    from xml.dom.minidom import parseString

    raw = tostring(root, encoding="unicode")
    return parseString(raw).documentElement.toprettyxml(indent="  ").strip()


def render_network_xml(
    name: str = NETWORK_NAME,
    uuid: str = NETWORK_UUID,
    hosts: Iterable[Tuple[str, str, str]] = NETWORK_HOSTS,
    dnsmasq_options: Iterable[str] = DNSMASQ_OPTIONS,
) -> str:
    """Render the isolated NAT network with static DHCP reservations."""
    network = Element("network")
    SubElement(network, "name").text = name
    SubElement(network, "uuid").text = uuid
    forward = SubElement(network, "forward", mode="nat")
    nat = SubElement(forward, "nat")
    SubElement(nat, "port", start=str(NETWORK_NAT_PORTS[0]), end=str(NETWORK_NAT_PORTS[1]))
    SubElement(network, "bridge", name=name, zone="trusted", stp="on", delay="0")
    SubElement(network, "mac", address=NETWORK_BRIDGE_MAC)
    ip = SubElement(network, "ip", address=NETWORK_GATEWAY, netmask=NETWORK_NETMASK)
    dhcp = SubElement(ip, "dhcp")
    SubElement(dhcp, "range", start=NETWORK_DHCP_RANGE[0], end=NETWORK_DHCP_RANGE[1])
    for mac, host_name, address in hosts:
        SubElement(dhcp, "host", mac=mac, name=host_name, ip=address)
    options = list(dnsmasq_options)
    if options:
        opts_el = SubElement(network, f"{{{DNSMASQ_NS}}}options")
        for value in options:
            SubElement(opts_el, f"{{{DNSMASQ_NS}}}option", value=value)
    return _element_to_str(network)


def parse_net_active(net_info: str) -> Optional[bool]:
    """Read the ``Active:`` field from ``virsh net-info`` output."""
    for line in net_info.splitlines():
        key, _, value = line.partition(":")
        if key.strip() == "Active":
            return value.strip().lower() == "yes"
    return None


class NetworkProvisioner:
    """Define and start the integration network only when needed."""

    def __init__(self, runner: CommandRunner, name: str = NETWORK_NAME, xml: Optional[str] = None) -> None:
        self.runner = runner
        self.name = name
        self.xml = xml if xml is not None else render_network_xml(name=name)

    def _virsh(self, *args: str):
        return self.runner.run(["virsh", "-c", LIBVIRT_URI, *args])

    def ensure(self) -> None:
        log("INFO", f"Configuring libvirt network '{self.name}'")
        info = self._virsh("net-info", self.name)
        if info.status != 0:
            self._define()
            info = self._virsh("net-info", self.name)
            if info.status != 0:
                raise NetworkFailure(f"Network '{self.name}' not found after define: {info.output.strip()}")
        else:
            log("INFO", f"Network '{self.name}' already defined")

        active = parse_net_active(info.output)
        if active is None:
            raise NetworkFailure(f"Could not determine state of network '{self.name}'")
        if active:
            log("INFO", f"Network '{self.name}' already active")
            return
        result = self._virsh("net-start", self.name)
        if result.status != 0:
            raise NetworkFailure(f"Failed to start network '{self.name}': {result.output.strip()}")
        log("SUCCESS", f"Network '{self.name}' started")

    def _define(self) -> None:
        fd, xml_path = tempfile.mkstemp(prefix=f"{self.name}-", suffix=".xml")
        try:
            with os.fdopen(fd, "w") as handle:
                handle.write(self.xml + "\n")
            result = self._virsh("net-define", xml_path)
        finally:
            os.unlink(xml_path)
        if result.status != 0:
            raise NetworkFailure(f"Failed to define network '{self.name}': {result.output.strip()}")
        log("INFO", f"Defined network '{self.name}'")
