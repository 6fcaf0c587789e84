from __future__ import annotations

from ..system.osinfo import go_arch
from .base import Tool

KUBECTL_STABLE_URL = "https://dl.k8s.io/release/stable.txt"
HELM_INSTALL_SCRIPT = "https://raw.githubusercontent.com/helm/helm/main/scripts/get-helm-3"


class KubectlTool(Tool):
    name = "kubectl"
    description = "kubectl"
    version_command = ("kubectl", "version", "--client")

    def binary_url(self, version: str) -> str:
        return f"https://dl.k8s.io/release/{version}/bin/linux/{go_arch()}/kubectl"

    def install(self) -> None:
        ctx = self.ctx
        version = ctx.downloader.get_text(KUBECTL_STABLE_URL).strip()
        binary = ctx.staging_path("kubectl")
        ctx.downloader.download(self.binary_url(version), binary)
        try:
            self.install_binary(binary)
        finally:
            binary.unlink(missing_ok=True)


class HelmTool(Tool):
    name = "helm"
    description = "Helm"
    version_command = ("helm", "version", "--short")

    def install(self) -> None:
        self.run_script(HELM_INSTALL_SCRIPT, "get-helm-3")
