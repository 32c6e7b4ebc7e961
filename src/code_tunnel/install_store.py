from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from code_tunnel.constants import MANIFEST_NAME


def _normalize_defaults(raw: Any) -> Dict[str, str]:
    if not isinstance(raw, dict):
        return {}
    defaults: Dict[str, str] = {}
    for key, value in raw.items():
        if isinstance(key, str) and isinstance(value, str) and value:
            defaults[key] = value
    return defaults


def _read_optional_str(data: Dict[str, Any], key: str) -> Optional[str]:
    raw = data.get(key)
    return raw if isinstance(raw, str) and raw else None


def manifest_path(install_dir: Path) -> Path:
    return install_dir / MANIFEST_NAME


@dataclass
class InstallManifest:
    """What an `install` run put where, kept inside the install directory.

    Args:
        install_dir: Directory holding `bin/code` and `bin/tunnel`.
        rc_file: Startup file that received the managed block, if any.
        shell: Shell name the block was rendered for.
        platform: VS Code CLI build id that was downloaded.
        defaults: Default settings keyed by environment variable name.
        installed_at: Epoch seconds of the install.
    """

    install_dir: str
    rc_file: Optional[str] = None
    shell: Optional[str] = None
    platform: Optional[str] = None
    defaults: Dict[str, str] = field(default_factory=dict)
    installed_at: float = 0.0

    @classmethod
    def load(cls, install_dir: Path) -> Optional["InstallManifest"]:
        path = manifest_path(install_dir)
        try:
            with open(path, "r", encoding="utf-8") as handle:
                data = json.load(handle)
        except (OSError, ValueError):
            return None
        if not isinstance(data, dict):
            return None
        installed_at = data.get("installed_at")
        return cls(
            install_dir=_read_optional_str(data, "install_dir") or str(install_dir),
            rc_file=_read_optional_str(data, "rc_file"),
            shell=_read_optional_str(data, "shell"),
            platform=_read_optional_str(data, "platform"),
            defaults=_normalize_defaults(data.get("defaults")),
            installed_at=float(installed_at)
            if isinstance(installed_at, (int, float))
            else 0.0,
        )

    def save(self) -> Path:
        install_dir = Path(self.install_dir)
        install_dir.mkdir(parents=True, exist_ok=True)
        if not self.installed_at:
            self.installed_at = time.time()
        path = manifest_path(install_dir)
        with open(path, "w", encoding="utf-8") as handle:
            json.dump(asdict(self), handle, indent=2)
        return path
