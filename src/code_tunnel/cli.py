from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path
from typing import Callable, Mapping, Optional, Sequence

from code_tunnel import console
from code_tunnel.dispatch import (
    build_session_env,
    build_srun_command,
    command_text,
    exec_command,
    find_code_binary,
    require_tools,
    summary_lines,
)
from code_tunnel.errors import CodeTunnelError
from code_tunnel.installer import (
    build_install_parser,
    build_uninstall_parser,
    run_install,
    run_uninstall,
)
from code_tunnel.options import parse_run_args, resolve_options, session_window

COMMANDS = ("run", "install", "uninstall")


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the `code-tunnel` command router and return a process exit code.

    Args:
        argv: Optional argv list without program name.

    Returns:
        POSIX-style process exit code.

    Example:
        >>> main(argv=["--help"])  # doctest: +SKIP
        0
    """

    raw_args = list(argv) if argv is not None else sys.argv[1:]
    command = raw_args[0] if raw_args and raw_args[0] in COMMANDS else "run"
    if raw_args and raw_args[0] == command:
        raw_args = raw_args[1:]
    try:
        if command == "install":
            return _run_install(argv=raw_args)
        if command == "uninstall":
            return _run_uninstall(argv=raw_args)
        return _run_tunnel(argv=raw_args)
    except CodeTunnelError as exc:
        console.error(str(exc))
        return 1
    except OSError as exc:
        console.error(f"{exc.filename or 'I/O'}: {exc.strerror or exc}")
        return 1
    except KeyboardInterrupt:
        console.error("Canceled.")
        return 130


def run_tunnel_command(
    args: argparse.Namespace,
    environ: Mapping[str, str],
    prompt: Callable[[str], str] = input,
) -> None:
    config = resolve_options(args, environ, prompt=prompt)
    cmd = build_srun_command(config)
    if args.dry_run:
        print(command_text(cmd))
        return
    code_bin = find_code_binary(environ)
    require_tools(environ)
    window = session_window(config.minutes)
    for line in summary_lines(config):
        print(line)
    print()
    sys.stdout.flush()
    exec_command(cmd, build_session_env(environ, window, code_bin))


def _run_tunnel(argv: Sequence[str]) -> int:
    args = parse_run_args(argv)
    run_tunnel_command(args=args, environ=os.environ)
    return 0


def _run_install(argv: Sequence[str]) -> int:
    args = build_install_parser().parse_args(args=list(argv))
    return run_install(args=args, environ=os.environ, home=Path.home())


def _run_uninstall(argv: Sequence[str]) -> int:
    args = build_uninstall_parser().parse_args(args=list(argv))
    return run_uninstall(args=args, home=Path.home())
