"""Command execution for provisioning steps.

Every external command (package managers, useradd, tar, systemctl, az,
kubectl, openssl) goes through :class:`Runner`, which adds ``sudo`` where a
step needs root, switches to another account with ``sudo -u`` and masks
secrets before anything reaches the log.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass, field
from typing import List, Mapping, Optional, Sequence

from .errors import CommandError

logger = logging.getLogger("azbuildhost.shell")

MASK = "***"


@dataclass
class CommandResult:
    args: List[str]
    returncode: int
    stdout: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass
class Runner:
    use_sudo: bool = True
    dry_run: bool = False
    secrets: List[str] = field(default_factory=list)
    history: List[List[str]] = field(default_factory=list)

    def add_secret(self, value: str) -> None:
        if value and value not in self.secrets:
            self.secrets.append(value)

    def mask(self, text: str) -> str:
        for secret in self.secrets:
            text = text.replace(secret, MASK)
        return text

    def display(self, args: Sequence[str]) -> str:
        return self.mask(shlex.join(args))

    def _needs_sudo(self) -> bool:
        if not self.use_sudo:
            return False
        geteuid = getattr(os, "geteuid", None)
        return geteuid is None or geteuid() != 0

    def build(self, cmd: Sequence[str], *, privileged: bool = False, as_user: Optional[str] = None,
              preserve_env: bool = False) -> List[str]:
        args = [str(part) for part in cmd]
        if as_user:
            return ["sudo", "-u", as_user, *args]
        if privileged and self._needs_sudo():
            return ["sudo", "-E", *args] if preserve_env else ["sudo", *args]
        return args

    def run(
        self,
        cmd: Sequence[str],
        *,
        privileged: bool = False,
        as_user: Optional[str] = None,
        cwd: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
        input: Optional[str] = None,
        capture: bool = False,
        check: bool = True,
        preserve_env: bool = False,
    ) -> CommandResult:
        args = self.build(cmd, privileged=privileged, as_user=as_user, preserve_env=preserve_env)
        self.history.append(args)
        logger.info("$ %s%s", self.display(args), f"  (cwd={cwd})" if cwd else "")
        if self.dry_run:
            return CommandResult(args=args, returncode=0)
        result = self._execute(args, cwd=cwd, env=env, input=input, capture=capture)
        if result.returncode != 0:
            logger.debug("exit %s: %s", result.returncode, self.mask(result.stdout.strip()[-500:]))
            if check:
                masked = shlex.split(self.display(args))
                raise CommandError(masked, result.returncode, self.mask(result.stdout))
        return result

    def _execute(
        self,
        args: List[str],
        *,
        cwd: Optional[str],
        env: Optional[Mapping[str, str]],
        input: Optional[str],
        capture: bool,
    ) -> CommandResult:
        full_env = None
        if env:
            full_env = dict(os.environ)
            full_env.update(env)
        try:
            proc = subprocess.run(
                args,
                cwd=cwd,
                env=full_env,
                input=input,
                text=True,
                stdout=subprocess.PIPE if capture else None,
                stderr=subprocess.STDOUT if capture else None,
            )
        except (FileNotFoundError, PermissionError) as err:
            return CommandResult(args=args, returncode=127, stdout=str(err))
        return CommandResult(args=args, returncode=proc.returncode, stdout=proc.stdout or "")

    def capture(self, cmd: Sequence[str], **kwargs) -> str:
        """Run quietly and return stdout; failures come back as ``<error: ...>``."""
        kwargs.setdefault("check", False)
        result = self.run(cmd, capture=True, **kwargs)
        if not result.ok:
            return f"<error: exit {result.returncode}: {result.stdout.strip()}>"
        return result.stdout

    def succeeds(self, cmd: Sequence[str], **kwargs) -> bool:
        result = self.run(cmd, capture=True, check=False, **kwargs)
        return result.ok

    def write_file(self, path: str, content: str, *, mode: Optional[str] = None) -> None:
        """Write ``content`` to a root-owned ``path`` through ``sudo tee``."""
        self.run(["tee", path], privileged=True, input=content, capture=True)
        if mode:
            self.run(["chmod", mode, path], privileged=True)


__all__ = ["CommandResult", "Runner", "MASK"]
