from __future__ import annotations

import os
import shlex
import shutil
from pathlib import Path
from typing import Dict, List, Mapping, NoReturn, Optional, Sequence

from code_tunnel.constants import (
    CODE_BINARY,
    DEFAULT_INSTALL_DIR,
    ENV_INSTALL_DIR,
    SCREEN,
    SRUN,
    TUNNEL_SHELL_COMMAND,
)
from code_tunnel.errors import SetupError
from code_tunnel.options import SessionWindow, TunnelConfig

TOOL_HINTS = {
    SRUN: "Are you on a SLURM cluster?",
    SCREEN: "Please install GNU Screen (or ask your sysadmin).",
}


def _is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


def find_code_binary(environ: Mapping[str, str]) -> Path:
    """Locate the VS Code CLI used to open the tunnel.

    Args:
        environ: Environment mapping; ``CODE_TUNNEL_DIR`` names an install dir.

    Returns:
        Path of an executable `code` binary.

    Raises:
        SetupError: When no candidate is executable and `code` is not on PATH.
    """

    candidates: List[Path] = []
    install_dir = environ.get(ENV_INSTALL_DIR)
    if install_dir:
        candidates.append(Path(install_dir).expanduser() / "bin" / CODE_BINARY)
    candidates.append(DEFAULT_INSTALL_DIR / "bin" / CODE_BINARY)
    for candidate in candidates:
        if _is_executable(candidate):
            return candidate
    on_path = shutil.which(CODE_BINARY, path=environ.get("PATH"))
    if on_path:
        return Path(on_path)
    raise SetupError(
        "Could not find the VS Code CLI ('code' binary).",
        hint="Is it installed? Run 'code-tunnel install'.",
    )


def require_tools(environ: Mapping[str, str], tools: Sequence[str] = (SRUN, SCREEN)) -> None:
    for tool in tools:
        if shutil.which(tool, path=environ.get("PATH")) is None:
            raise SetupError(f"'{tool}' not found.", hint=TOOL_HINTS.get(tool, ""))


def build_srun_command(config: TunnelConfig) -> List[str]:
    """Construct the `srun` command that hosts the tunnel in a Screen session.

    Args:
        config: Resolved launch settings.

    Returns:
        Command arguments suitable for exec.

    Example:
        >>> cfg = TunnelConfig(account="acme", partition="gpu", minutes=90)
        >>> build_srun_command(cfg)[:5]
        ['srun', '-A', 'acme', '-p', 'gpu']
    """

    cmd: List[str] = [
        SRUN,
        "-A",
        config.account,
        "-p",
        config.partition,
        "--nodes",
        str(config.nodes),
        "--ntasks",
        str(config.ntasks),
        "--cpus-per-task",
        str(config.cpus),
        f"--gres={config.gpus}",
        "-t",
        config.time_str,
    ]
    if config.mem:
        cmd.append(f"--mem={config.mem}")
    if config.qos:
        cmd.append(f"--qos={config.qos}")
    cmd.extend(config.extra_args)
    cmd += [
        "--pty",
        SCREEN,
        "-mS",
        config.session,
        "bash",
        "-c",
        TUNNEL_SHELL_COMMAND,
    ]
    return cmd


def build_session_env(
    base: Mapping[str, str], window: SessionWindow, code_bin: Path
) -> Dict[str, str]:
    env = dict(base)
    env["TUNNEL_INFO"] = window.banner()
    env["CODE_BIN"] = str(code_bin)
    return env


def summary_lines(config: TunnelConfig) -> List[str]:
    return [
        f"Requesting SLURM job: account={config.account} "
        f"partition={config.partition} time={config.time_str}",
        f"GPU={config.gpus} CPUs={config.cpus}",
    ]


def command_text(cmd: Sequence[str]) -> str:
    return " ".join(shlex.quote(part) for part in cmd)


def exec_command(cmd: Sequence[str], env: Optional[Mapping[str, str]] = None) -> NoReturn:
    """Replace the current process with `cmd`; the child's status becomes ours."""

    try:
        os.execvpe(cmd[0], list(cmd), dict(env if env is not None else os.environ))
    except OSError as exc:
        raise SetupError(f"failed to launch {cmd[0]}: {exc}") from exc
