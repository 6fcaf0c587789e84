from __future__ import annotations

import socket

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

TOOL_NAMES = (
    "docker",
    "dotnet",
    "nodejs",
    "azure_cli",
    "kubectl",
    "helm",
    "terraform",
    "powershell",
)

AFFIRMATIVE = {"y", "yes", "true", "1"}


class AgentSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_ignore_empty=True, extra="ignore")

    # Azure DevOps
    azdo_url: str = Field(default="")
    azdo_pat: str = Field(default="")
    azdo_pool: str = Field(default="Default")
    azdo_agent_name: str = Field(default_factory=socket.gethostname)

    # agent layout, derived from agent_user when unset
    agent_user: str = Field(default="azpagent")
    agent_home: str = Field(default="")
    agent_dir: str = Field(default="")
    agent_work_dir: str = Field(default="")

    run_as_service: bool = True
    replace_agent: bool = False
    accept_tee_eula: str = Field(default="y")
    agent_tags: str = Field(default="")

    agent_version: str = Field(default="latest")
    agent_fallback_version: str = Field(default="3.243.1")

    install_docker: bool = True
    install_dotnet: bool = True
    install_nodejs: bool = True
    install_azure_cli: bool = True
    install_kubectl: bool = True
    install_helm: bool = False
    install_terraform: bool = False
    install_powershell: bool = False

    dotnet_version: str = Field(default="8.0")
    nodejs_version: str = Field(default="20")
    terraform_version: str = Field(default="latest")

    @model_validator(mode="after")
    def _derive_paths(self) -> "AgentSettings":
        if not self.agent_home:
            self.agent_home = f"/home/{self.agent_user}"
        if not self.agent_dir:
            self.agent_dir = f"{self.agent_home}/azagent"
        if not self.agent_work_dir:
            self.agent_work_dir = f"{self.agent_dir}/_work"
        return self

    @property
    def accepts_tee_eula(self) -> bool:
        return self.accept_tee_eula.strip().lower() in AFFIRMATIVE

    @property
    def enabled_tools(self) -> list[str]:
        return [name for name in TOOL_NAMES if getattr(self, f"install_{name}")]

    def missing_required(self) -> list[str]:
        missing = []
        if not self.azdo_url.strip():
            missing.append("AZDO_URL")
        if not self.azdo_pat.strip():
            missing.append("AZDO_PAT")
        return missing

    def masked_dump(self) -> dict:
        data = self.model_dump()
        if data.get("azdo_pat"):
            data["azdo_pat"] = "***"
        return data


class DockerSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_ignore_empty=True, extra="ignore")

    docker_user: str = Field(default="azureuser")
    install_compose: bool = False
    compose_version: str = Field(default="latest")
    enable_service: bool = True
    start_now: bool = True
    install_buildx: bool = True
    configure_logging: bool = True
    log_driver: str = Field(default="json-file")
    log_max_size: str = Field(default="10m")
    log_max_file: str = Field(default="3")

    def daemon_config(self) -> dict:
        return {
            "log-driver": self.log_driver,
            "log-opts": {
                "max-size": self.log_max_size,
                "max-file": self.log_max_file,
            },
            "storage-driver": "overlay2",
        }


class AksSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="AKS_", env_file=".env", env_ignore_empty=True, extra="ignore")

    resource_group: str = Field(default="")
    cluster_name: str = Field(default="")
    keyvault_name: str = Field(default="")
    cert_name: str = Field(default="ingress-tls")
    cert_organization: str = Field(default="azbuildhost")
    cert_days: int = 365
    ingress_host: str = Field(default="")
    create_certificate: bool = False
    private_dns_zone_id: str = Field(default="")
    ingress_controller_name: str = Field(default="nginx-internal")
    dns_forwarders: str = Field(default="")
    use_command_invoke: bool = True

    def missing_required(self) -> list[str]:
        missing = []
        if not self.resource_group.strip():
            missing.append("AKS_RESOURCE_GROUP")
        if not self.cluster_name.strip():
            missing.append("AKS_CLUSTER_NAME")
        return missing
