"""AKS private cluster configuration.

A private API server is not reachable from the build host, so manifests are
applied through ``az aks command invoke`` by default, which uploads the
files alongside the command. With ``AKS_USE_COMMAND_INVOKE=false`` the
host's own ``kubectl`` is used after ``az aks get-credentials``.
"""

from __future__ import annotations

import json
import logging
import tempfile
from pathlib import Path
from typing import Dict, List, Optional

from .errors import CommandError, ConfigError
from .run_logger import NullRunLogger
from .settings import AksSettings
from .shell import Runner

logger = logging.getLogger("azbuildhost.aks")

INTERNAL_LB_ANNOTATION = "service.beta.kubernetes.io/azure-load-balancer-internal"
APPROUTING_API = "approuting.kubernetes.azure.com/v1alpha1"


def parse_dns_forwarders(value: str) -> Dict[str, List[str]]:
    """Parse ``zone=ip[,ip...];zone=...`` into an ordered zone map."""
    zones: Dict[str, List[str]] = {}
    for chunk in value.split(";"):
        chunk = chunk.strip()
        if not chunk:
            continue
        zone, sep, servers = chunk.partition("=")
        zone = zone.strip()
        ips = [ip.strip() for ip in servers.split(",") if ip.strip()]
        if not sep or not zone or not ips:
            raise ConfigError(f"Invalid AKS_DNS_FORWARDERS entry '{chunk}'. Expected zone=ip[,ip]")
        zones.setdefault(zone, []).extend(ips)
    return zones


def coredns_custom_manifest(zones: Dict[str, List[str]]) -> dict:
    data = {}
    for zone, servers in zones.items():
        data[f"{zone}.server"] = (
            f"{zone}:53 {{\n"
            "    errors\n"
            "    cache 30\n"
            f"    forward . {' '.join(servers)}\n"
            "}\n"
        )
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": "coredns-custom", "namespace": "kube-system"},
        "data": data,
    }


def internal_ingress_controller_manifest(name: str) -> dict:
    return {
        "apiVersion": APPROUTING_API,
        "kind": "NginxIngressController",
        "metadata": {"name": name},
        "spec": {
            "ingressClassName": name,
            "controllerNamePrefix": name,
            "loadBalancerAnnotations": {INTERNAL_LB_ANNOTATION: "true"},
        },
    }


class AksConfigurator:
    def __init__(self, settings: AksSettings, runner: Runner, reporter: NullRunLogger | None = None) -> None:
        self.settings = settings
        self.runner = runner
        self.reporter = reporter or NullRunLogger()
        self._credentials = False

    @property
    def _target(self) -> List[str]:
        return ["-g", self.settings.resource_group, "-n", self.settings.cluster_name]

    def validate_config(self) -> None:
        self.reporter.header("Validating AKS Configuration")
        missing = self.settings.missing_required()
        if missing:
            for name in missing:
                self.reporter.error(f"{name} is required")
            raise ConfigError("\n".join(
                f"{name} is required. Set it via environment variable or .env file." for name in missing
            ))
        if self.settings.create_certificate and not self.settings.ingress_host.strip():
            raise ConfigError("AKS_INGRESS_HOST is required when AKS_CREATE_CERTIFICATE=true")
        if self.settings.create_certificate and not self.settings.keyvault_name.strip():
            raise ConfigError("AKS_KEYVAULT_NAME is required when AKS_CREATE_CERTIFICATE=true")
        # fail on a malformed forwarder list before touching the cluster
        parse_dns_forwarders(self.settings.dns_forwarders)
        self.reporter.success("Configuration validated")

    def enable_app_routing(self) -> None:
        self.reporter.header("Enabling Application Routing")
        self.runner.run(["az", "aks", "approuting", "enable", *self._target])
        self.reporter.success("Application routing add-on enabled")

    def create_tls_certificate(self) -> None:
        s = self.settings
        host = s.ingress_host.strip()
        self.reporter.header("Creating TLS Certificate")
        with tempfile.TemporaryDirectory(prefix="azbh-cert-") as tmp:
            crt = Path(tmp) / f"{s.cert_name}.crt"
            key = Path(tmp) / f"{s.cert_name}.key"
            pfx = Path(tmp) / f"{s.cert_name}.pfx"
            self.reporter.info(f"Generating self-signed certificate for {host}...")
            self.runner.run([
                "openssl", "req", "-new", "-x509", "-nodes",
                "-days", str(s.cert_days),
                "-out", str(crt), "-keyout", str(key),
                "-subj", f"/CN={host}/O={s.cert_organization}",
                "-addext", f"subjectAltName=DNS:{host}",
            ], capture=True)
            self.runner.run([
                "openssl", "pkcs12", "-export",
                "-in", str(crt), "-inkey", str(key),
                "-out", str(pfx), "-passout", "pass:",
            ], capture=True)
            self.reporter.info(f"Importing certificate '{s.cert_name}' into Key Vault {s.keyvault_name}...")
            self.runner.run([
                "az", "keyvault", "certificate", "import",
                "--vault-name", s.keyvault_name,
                "--name", s.cert_name,
                "--file", str(pfx),
            ], capture=True)
        self.reporter.success("Certificate imported")

    def attach_keyvault(self) -> None:
        s = self.settings
        self.reporter.header("Attaching Key Vault")
        vault_id = self.runner.run(
            ["az", "keyvault", "show", "--name", s.keyvault_name, "--query", "id", "-o", "tsv"],
            capture=True,
        ).stdout.strip()
        if not vault_id and not self.runner.dry_run:
            raise ConfigError(f"Key Vault '{s.keyvault_name}' has no resource id")
        self.runner.run([
            "az", "aks", "approuting", "update", *self._target,
            "--enable-kv", "--attach-kv", vault_id or f"<id of {s.keyvault_name}>",
        ])
        self.reporter.success(f"Key Vault {s.keyvault_name} attached to application routing")

    def attach_dns_zone(self) -> None:
        self.reporter.header("Attaching Private DNS Zone")
        self.runner.run([
            "az", "aks", "approuting", "zone", "add", *self._target,
            "--ids", self.settings.private_dns_zone_id, "--attach-zones",
        ])
        self.reporter.success("Private DNS zone attached")

    # -- manifests -----------------------------------------------------
    def _ensure_credentials(self) -> None:
        if self._credentials:
            return
        self.runner.run(["az", "aks", "get-credentials", *self._target, "--overwrite-existing"])
        self._credentials = True

    def kubectl(self, command: str, files: Optional[List[Path]] = None) -> str:
        """Run a kubectl command line against the cluster."""
        if self.settings.use_command_invoke:
            cmd = ["az", "aks", "command", "invoke", *self._target, "--command", command,
                   "--query", "{exitCode:exitCode,logs:logs}", "-o", "json"]
            for f in files or []:
                cmd.extend(["--file", str(f)])
            return self._remote_logs(command, self.runner.run(cmd, capture=True).stdout)
        self._ensure_credentials()
        return self.runner.run(command.split(), capture=True, cwd=str(files[0].parent) if files else None).stdout

    @staticmethod
    def _remote_logs(command: str, output: str) -> str:
        # az exits 0 even when the command inside the cluster fails
        if not output.strip():
            return ""
        try:
            result = json.loads(output)
        except ValueError as exc:
            raise CommandError(command.split(), 1, f"unreadable command invoke result: {output}") from exc
        logs = (result or {}).get("logs") or ""
        code = (result or {}).get("exitCode")
        if code not in (0, None):
            raise CommandError(command.split(), int(code), logs)
        return logs

    def apply_manifest(self, manifest: dict, filename: str) -> None:
        with tempfile.TemporaryDirectory(prefix="azbh-manifest-") as tmp:
            path = Path(tmp) / filename
            path.write_text(json.dumps(manifest, indent=2) + "\n", encoding="utf-8")
            logger.debug("manifest %s:\n%s", filename, path.read_text(encoding="utf-8"))
            out = self.kubectl(f"kubectl apply -f {filename}", files=[path])
        if out.strip():
            self.reporter.output(out, title=filename)

    def apply_internal_ingress(self) -> None:
        name = self.settings.ingress_controller_name
        self.reporter.header("Configuring Internal Ingress Controller")
        self.apply_manifest(internal_ingress_controller_manifest(name), f"{name}.json")
        self.reporter.success(f"Internal ingress controller '{name}' applied")

    def configure_dns_forwarding(self) -> None:
        zones = parse_dns_forwarders(self.settings.dns_forwarders)
        if not zones:
            return
        self.reporter.header("Configuring Hybrid DNS Forwarding")
        for zone, servers in zones.items():
            self.reporter.info(f"{zone} -> {', '.join(servers)}")
        self.apply_manifest(coredns_custom_manifest(zones), "coredns-custom.json")
        self.reporter.info("Restarting CoreDNS...")
        self.kubectl("kubectl -n kube-system rollout restart deployment coredns")
        self.reporter.success("CoreDNS forwarders applied")

    def certificate_uri(self) -> str:
        s = self.settings
        return self.runner.capture([
            "az", "keyvault", "certificate", "show",
            "--vault-name", s.keyvault_name, "--name", s.cert_name,
            "--query", "id", "-o", "tsv",
        ]).strip()

    def display_summary(self) -> None:
        s = self.settings
        self.reporter.header("AKS Configuration Complete")
        rows = [
            ("Resource Group", s.resource_group),
            ("Cluster", s.cluster_name),
            ("Ingress Class", s.ingress_controller_name),
        ]
        if s.keyvault_name:
            rows.append(("Key Vault", s.keyvault_name))
        if s.private_dns_zone_id:
            rows.append(("DNS Zone", s.private_dns_zone_id))
        self.reporter.summary("Cluster", rows)
        if s.keyvault_name and not self.runner.dry_run:
            uri = self.certificate_uri()
            if uri and not uri.startswith("<error"):
                self.reporter.bullets("Ingress TLS annotation:", [
                    f"kubernetes.azure.com/tls-cert-keyvault-uri: {uri}",
                ])
            else:
                self.reporter.warning(f"Certificate '{s.cert_name}' not found in {s.keyvault_name}")

    def run(self) -> None:
        s = self.settings
        self.reporter.header("AKS Private Cluster Configuration")
        self.validate_config()
        self.enable_app_routing()
        if s.create_certificate:
            self.create_tls_certificate()
        if s.keyvault_name:
            self.attach_keyvault()
        if s.private_dns_zone_id:
            self.attach_dns_zone()
        self.apply_internal_ingress()
        self.configure_dns_forwarding()
        self.display_summary()
        self.reporter.success("Configuration complete!")


__all__ = [
    "AksConfigurator",
    "coredns_custom_manifest",
    "internal_ingress_controller_manifest",
    "parse_dns_forwarders",
]
