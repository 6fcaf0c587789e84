from __future__ import annotations

from typing import Sequence


class ProvisionError(Exception):
    """Base class for fatal provisioning failures."""


class ConfigError(ProvisionError):
    pass


class UnsupportedOSError(ProvisionError):
    pass


class ExtractionError(ProvisionError):
    pass


class DownloadError(ProvisionError):
    def __init__(self, urls: Sequence[str], hint: str = "") -> None:
        self.urls = list(urls)
        self.hint = hint
        message = "Failed to download from all sources"
        if self.urls:
            message += ":\n" + "\n".join(f"  - {url}" for url in self.urls)
        if hint:
            message += "\n" + hint
        super().__init__(message)


class CommandError(ProvisionError):
    def __init__(self, args: Sequence[str], returncode: int, output: str = "") -> None:
        self.args_list = list(args)
        self.returncode = returncode
        self.output = output
        message = f"Command failed ({returncode}): {' '.join(self.args_list)}"
        tail = output.strip()[-1500:]
        if tail:
            message += f"\n{tail}"
        super().__init__(message)


__all__ = [
    "ProvisionError",
    "ConfigError",
    "UnsupportedOSError",
    "ExtractionError",
    "DownloadError",
    "CommandError",
]
