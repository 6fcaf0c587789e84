from __future__ import annotations
from pydantic import BaseModel
from pathlib import Path
import os

ENV_FILE = Path(".env")
PREFIX = "AZBH_"

def _flag(name: str, default: bool) -> bool:
    raw = os.environ.get(PREFIX + name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "y", "on")

def load_env_file(path: Path = ENV_FILE) -> None:
    """Export KEY=VALUE lines from a shell-style env file without overriding the environment."""
    if not path.exists():
        return
    for raw in path.read_text(encoding="utf-8").splitlines():
        line = raw.strip()
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        os.environ.setdefault(key.strip(), value)

class Config(BaseModel):
    """Options of the tool itself; host settings live in settings.py."""
    log_level: str = "INFO"            # DEBUG|INFO|WARNING|ERROR
    log_file: str | None = None        # e.g., azbuildhost.log
    log_console: bool = True           # stderr, keeps stdout for reports
    dry_run: bool = False              # log commands without running them
    use_sudo: bool = True              # prefix privileged commands with sudo
    staging_dir: str | None = None     # downloads land here before install

    @classmethod
    def from_env(cls) -> "Config":
        load_env_file()
        env = os.environ.get
        return cls(
            log_level=env(PREFIX + "LOG_LEVEL", "INFO").strip().upper() or "INFO",
            log_file=env(PREFIX + "LOG_FILE") or None,
            log_console=_flag("LOG_CONSOLE", True),
            dry_run=_flag("DRY_RUN", False),
            use_sudo=_flag("SUDO", True),
            staging_dir=env(PREFIX + "STAGING_DIR") or None,
        )

def save_to_env(cfg: Config, path: str | None = None) -> None:
    p = Path(path) if path else ENV_FILE
    # AZDO_*, AKS_* and friends share the file; only our own keys are replaced
    kept = []
    if p.exists():
        kept = [l for l in p.read_text(encoding="utf-8").splitlines() if not l.strip().startswith(PREFIX)]
    ours = {
        "LOG_LEVEL": cfg.log_level,
        "LOG_FILE": cfg.log_file or "",
        "LOG_CONSOLE": "true" if cfg.log_console else "false",
        "DRY_RUN": "true" if cfg.dry_run else "false",
        "SUDO": "true" if cfg.use_sudo else "false",
        "STAGING_DIR": cfg.staging_dir or "",
    }
    lines = kept + [f"{PREFIX}{k}={v}" for k, v in ours.items()]
    p.write_text("\n".join(lines) + "\n", encoding="utf-8")
