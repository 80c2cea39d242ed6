"""
Firewall exposure reconciler.

Owns the permanent zone file of the managed firewalld zone. The declared
allow-list is authoritative: services and ports that are not declared are
dropped from the zone when the file is regenerated.
"""

import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Optional

from secure_bootstrap.config_loader import is_port_spec
from secure_bootstrap.enums import ConfigurationDomain
from secure_bootstrap.exceptions import ActivationError, ValidationError
from secure_bootstrap.models import FirewallState
from secure_bootstrap.probes import FirewallProbe
from secure_bootstrap.reconciler import Reconciler
from secure_bootstrap.system import ensure_package, service_active


def _port_covers(spec: str, port: int) -> bool:
    number, _, proto = spec.partition("/")
    if proto != "tcp":
        return False
    low, _, high = number.partition("-")
    return int(low) <= port <= int(high or low)


class FirewallReconciler(Reconciler):
    """Converges the exposed services and ports of one firewalld zone."""

    domain = ConfigurationDomain.FIREWALL_EXPOSURE
    probe_class = FirewallProbe
    verify_fields = ("running", "services", "ports")
    depends_on = (ConfigurationDomain.SSH_POLICY,)

    @property
    def artifact_path(self) -> Path:
        fw = self.config.firewall
        return fw.zones_dir / f"{fw.zone}.xml"

    def prepare(self, desired: FirewallState, actual: FirewallState) -> None:
        if actual.installed:
            return
        result = ensure_package(self.runner, "firewalld")
        if not result.ok:
            raise ActivationError(
                code="package_install",
                message=f"Could not install firewalld: {result.detail()}",
                details={"domain": self.name, "package": "firewalld"},
            )
        self._log_info("Installed firewalld")

    def render(self, desired: FirewallState) -> str:
        zone = ET.Element("zone")
        ET.SubElement(zone, "short").text = self.config.firewall.zone.capitalize()
        ET.SubElement(zone, "description").text = (
            "Managed by secure-bootstrap. Only declared services and ports are exposed."
        )
        for service in sorted(desired.services or ()):
            ET.SubElement(zone, "service", {"name": service})
        for spec in sorted(desired.ports or ()):
            port, _, protocol = spec.partition("/")
            ET.SubElement(zone, "port", {"port": port, "protocol": protocol})
        ET.indent(zone, space="  ")
        body = ET.tostring(zone, encoding="unicode")
        return '<?xml version="1.0" encoding="utf-8"?>\n' + body + "\n"

    def validate(
        self,
        candidate: Optional[Path],
        desired: FirewallState,
        actual: FirewallState,
    ) -> None:
        try:
            root = ET.parse(candidate).getroot()
        except ET.ParseError as e:
            raise ValidationError(
                code="zone_syntax",
                message=f"Rendered zone file is not well-formed: {e}",
                details={"domain": self.name},
            )

        services = {el.get("name") for el in root.findall("service")}
        ports = [f"{el.get('port')}/{el.get('protocol')}" for el in root.findall("port")]

        bad_ports = [spec for spec in ports if not is_port_spec(spec)]
        if bad_ports:
            raise ValidationError(
                code="port_syntax",
                message=f"Invalid port specification(s): {', '.join(sorted(bad_ports))}",
                details={"domain": self.name, "ports": sorted(bad_ports)},
            )

        unknown = services - self.known_services()
        if unknown:
            raise ValidationError(
                code="unknown_service",
                message=f"firewalld does not know service(s): {', '.join(sorted(unknown))}",
                details={"domain": self.name, "services": sorted(unknown)},
            )

        ssh_port = self._ssh_port(desired)
        reachable = (ssh_port == 22 and "ssh" in services) or any(
            _port_covers(spec, ssh_port) for spec in ports
        )
        if not reachable:
            raise ValidationError(
                code="ssh_not_exposed",
                message=f"Zone would not expose the SSH port {ssh_port}",
                details={"domain": self.name, "port": ssh_port},
            )

    def known_services(self) -> set[str]:
        command = "firewall-cmd" if self._running() else "firewall-offline-cmd"
        result = self.runner.run([command, "--get-services"])
        if not result.ok:
            raise ValidationError(
                code="service_catalog",
                message=f"Cannot list firewalld services: {result.detail()}",
                details={"domain": self.name},
            )
        return set(result.stdout.split())

    def activate(self, desired: FirewallState, actual: FirewallState) -> None:
        if self._running():
            result = self.runner.run(["firewall-cmd", "--reload"])
        else:
            result = self.runner.run(["systemctl", "enable", "--now", "firewalld"])
        if not result.ok:
            raise ActivationError(
                code="firewall_reload",
                message=f"firewalld did not load the zone: {result.detail()}",
                details={"domain": self.name, "artifact": str(self.artifact_path)},
            )

    def _running(self) -> bool:
        return service_active(self.runner, "firewalld")

    def _ssh_port(self, desired: FirewallState) -> int:
        return desired.ssh_port if desired.ssh_port is not None else 22
