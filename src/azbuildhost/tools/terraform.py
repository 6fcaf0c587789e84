from __future__ import annotations

import zipfile
from pathlib import Path

from ..errors import ExtractionError, ProvisionError
from ..system.osinfo import go_arch
from .base import Tool

CHECKPOINT_URL = "https://checkpoint-api.hashicorp.com/v1/check/terraform"


class TerraformTool(Tool):
    name = "terraform"
    description = "Terraform"
    version_command = ("terraform", "--version")

    def resolve_version(self) -> str:
        requested = self.ctx.settings.terraform_version.strip()
        if requested and requested != "latest":
            return requested
        payload = self.ctx.downloader.get_json(CHECKPOINT_URL)
        version = payload.get("current_version") if isinstance(payload, dict) else None
        if not version:
            raise ProvisionError(f"Could not resolve the latest Terraform version from {CHECKPOINT_URL}")
        return str(version)

    def archive_url(self, version: str) -> str:
        return (
            f"https://releases.hashicorp.com/terraform/{version}/"
            f"terraform_{version}_linux_{go_arch()}.zip"
        )

    def install(self) -> None:
        ctx = self.ctx
        version = self.resolve_version()
        archive = ctx.staging_path(f"terraform_{version}_linux.zip")
        ctx.downloader.download(self.archive_url(version), archive)
        if ctx.runner.dry_run:
            self.install_binary(archive.with_name("terraform"))
            return
        try:
            with zipfile.ZipFile(archive) as zf:
                binary = Path(zf.extract("terraform", ctx.staging_dir))
        except (zipfile.BadZipFile, KeyError) as exc:
            raise ExtractionError(f"Failed to extract terraform from {archive.name}: {exc}") from exc
        finally:
            archive.unlink(missing_ok=True)
        try:
            self.install_binary(binary)
        finally:
            binary.unlink(missing_ok=True)
