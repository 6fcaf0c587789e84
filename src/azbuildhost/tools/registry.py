from __future__ import annotations

from typing import Dict, Type

from .azure_cli import AzureCliTool
from .base import Tool
from .docker import DockerTool
from .dotnet import DotnetTool
from .kubernetes import HelmTool, KubectlTool
from .nodejs import NodejsTool
from .powershell import PowerShellTool
from .terraform import TerraformTool


ToolName = str


# Insertion order is install order.
TOOL_REGISTRY: Dict[ToolName, Type[Tool]] = {
    "docker": DockerTool,
    "dotnet": DotnetTool,
    "nodejs": NodejsTool,
    "azure_cli": AzureCliTool,
    "kubectl": KubectlTool,
    "helm": HelmTool,
    "terraform": TerraformTool,
    "powershell": PowerShellTool,
}
