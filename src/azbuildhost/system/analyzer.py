
from __future__ import annotations

from typing import Mapping, Optional, Sequence, TypedDict

class Report(TypedDict):
    platform: dict
    agent: Optional[dict]
    tools: dict
    service: Optional[dict]

import json, platform
from pathlib import Path
from ..shell import Runner
from .services import SystemdService

class HostAnalyzer:
    """Post-install verification: agent config, tool versions, service state."""

    def __init__(self, runner: Runner) -> None:
        self.runner = runner

    def _cap(self, cmd: Sequence[str]) -> str:
        out = self.runner.capture(list(cmd)).strip()
        return out.splitlines()[0] if out else ""

    @staticmethod
    def agent_config(agent_dir: str) -> Optional[dict]:
        path = Path(agent_dir) / ".agent"
        try:
            return json.loads(path.read_text(encoding="utf-8-sig"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            return {"error": f"<unreadable {path}: {e}>"}

    def tool_versions(self, commands: Mapping[str, Sequence[str]]) -> dict:
        return {name: self._cap(cmd) or "<not found>" for name, cmd in commands.items()}

    def analyze(self, agent_dir: str | None = None, tools: Mapping[str, Sequence[str]] | None = None,
                service: str | None = None) -> Report:
        rep: Report = {
            "platform": {
                "system": platform.system(),
                "release": platform.release(),
                "machine": platform.machine(),
            },
            "agent": None,
            "tools": {},
            "service": None,
        }
        if agent_dir:
            rep["agent"] = self.agent_config(agent_dir)
        if tools:
            rep["tools"] = self.tool_versions(tools)
        if service:
            unit = SystemdService(service, self.runner)
            rep["service"] = {"name": service, "active": unit.is_active(), "status": unit.status()}
        return rep

    @staticmethod
    def render_markdown(rep: Report) -> str:
        md = []
        plat = rep["platform"]
        md.append(f"**Platform**: {plat['system']} {plat['release']} ({plat['machine']})\n")
        if rep.get("agent") is not None:
            md.append("## Agent configuration\n```json\n" + json.dumps(rep["agent"], indent=2) + "\n```")
        if rep.get("tools"):
            md.append("## Installed tools")
            md.extend(f"- {name}: {version}" for name, version in rep["tools"].items())
        if rep.get("service"):
            svc = rep["service"]
            state = "active" if svc["active"] else "inactive"
            md.append(f"## Service {svc['name']} ({state})\n```\n" + (svc.get("status") or "").strip() + "\n```")
        return "\n".join(md)
