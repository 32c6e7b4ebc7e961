from __future__ import annotations

import argparse
import os
import platform
import shlex
import shutil
import stat
import subprocess
import sys
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from code_tunnel import console
from code_tunnel.constants import (
    ARCHIVE_NAME,
    CODE_BINARY,
    DEFAULT_INSTALL_DIR,
    ENV_INSTALL_DIR,
    ENV_PREFIX,
    TAG,
    VSCODE_DOWNLOAD_URL,
    WRAPPER_NAME,
)
from code_tunnel.errors import SetupError, UsageError, ValidationError
from code_tunnel.format_utils import parse_positive_int, sanitize_text
from code_tunnel.install_store import InstallManifest
from code_tunnel.options import StrictArgumentParser
from code_tunnel.shell_config import (
    ConfigBlock,
    backup_path,
    build_install_block,
    detect_shell_target,
    rc_candidates,
    remove_block,
    upsert_block,
)

ARCH_TAGS = {
    "x86_64": "x64",
    "amd64": "x64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "armhf",
    "armhf": "armhf",
}


@dataclass(frozen=True)
class DefaultPrompt:
    dest: str
    suffix: str
    text: str
    required: bool = False
    numeric: bool = False

    @property
    def env_name(self) -> str:
        return f"{ENV_PREFIX}{self.suffix}"


# Prompt order shown to the user
DEFAULT_PROMPTS: Tuple[DefaultPrompt, ...] = (
    DefaultPrompt("account", "ACCOUNT", "SLURM account (required)", required=True),
    DefaultPrompt("partition", "PARTITION", "SLURM partition (required)", required=True),
    DefaultPrompt("qos", "QOS", "Quality of service (QOS)"),
    DefaultPrompt("cpus", "CPUS", "CPUs per task [default: 2]", numeric=True),
    DefaultPrompt("gpus", "GPUS", "GPU GRES spec [default: gpu:1]"),
    DefaultPrompt("mem", "MEM", "Memory (e.g. 16G)"),
    DefaultPrompt("nodes", "NODES", "Nodes [default: 1]", numeric=True),
    DefaultPrompt("ntasks", "NTASKS", "Tasks [default: 1]", numeric=True),
)


def build_install_parser() -> argparse.ArgumentParser:
    parser = StrictArgumentParser(
        prog="code-tunnel install",
        description=(
            "Install code-tunnel and the VS Code CLI. SLURM defaults not given "
            "as flags are prompted for interactively."
        ),
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        allow_abbrev=False,
    )
    parser.add_argument(
        "-d", "--dir", type=Path, default=DEFAULT_INSTALL_DIR, help="Installation directory"
    )
    parser.add_argument("-a", "--account", help="Default SLURM account")
    parser.add_argument("-p", "--partition", help="Default SLURM partition")
    parser.add_argument("--cpus", help="Default CPUs per task")
    parser.add_argument("--gpus", help="Default GPU resource spec")
    parser.add_argument("--mem", help="Default memory (e.g. 16G)")
    parser.add_argument("--qos", help="Default quality of service")
    parser.add_argument("--nodes", help="Default number of nodes")
    parser.add_argument("--ntasks", help="Default number of tasks")
    parser.add_argument(
        "--no-modify-rc",
        action="store_true",
        help="Do not write PATH and defaults to the shell startup file",
    )
    return parser


def build_uninstall_parser() -> argparse.ArgumentParser:
    parser = StrictArgumentParser(
        prog="code-tunnel uninstall",
        description="Uninstall code-tunnel and the VS Code CLI.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        allow_abbrev=False,
    )
    parser.add_argument(
        "-d", "--dir", type=Path, default=DEFAULT_INSTALL_DIR, help="Installation directory"
    )
    return parser


def _read_line(prompt: Callable[[str], str], text: str) -> Optional[str]:
    try:
        return prompt(text).strip()
    except EOFError:
        return None


def prompt_default(
    spec: DefaultPrompt,
    current: Optional[str],
    previous: Optional[str] = None,
    prompt: Callable[[str], str] = input,
) -> str:
    """Return a flag value as-is, otherwise ask for one.

    Args:
        spec: Which default is being asked for.
        current: Value already supplied on the command line.
        previous: Value from an earlier install, kept when the answer is blank.
        prompt: Line reader.

    Raises:
        UsageError: When a required value cannot be read.
    """

    if current:
        return current
    if previous:
        suffix = f" (press Enter to keep {previous})"
    elif spec.required:
        suffix = ""
    else:
        suffix = " (press Enter to skip)"
    while True:
        answer = _read_line(prompt, f"{TAG} {spec.text}{suffix}: ")
        if answer is None:
            if spec.required and not previous:
                raise UsageError(
                    f"{spec.env_name} is required; pass it with --{spec.dest}."
                )
            return previous or ""
        if sanitize_text(answer) != answer:
            console.info("Use printable ASCII characters only.")
            continue
        value = answer or previous or ""
        if value or not spec.required:
            return value
        console.info("This field is required.")


def collect_defaults(
    args: argparse.Namespace,
    previous: Mapping[str, str],
    prompt: Callable[[str], str] = input,
) -> Dict[str, str]:
    """Gather installer defaults keyed by environment variable name.

    Raises:
        ValidationError: When a numeric default is not a positive integer.
    """

    defaults: Dict[str, str] = {}
    for spec in DEFAULT_PROMPTS:
        value = prompt_default(
            spec,
            current=getattr(args, spec.dest),
            previous=previous.get(spec.env_name),
            prompt=prompt,
        )
        if not value:
            continue
        if spec.numeric and parse_positive_int(value) is None:
            raise ValidationError(
                f"--{spec.dest} must be a positive integer, got: {value!r}"
            )
        defaults[spec.env_name] = value
    return defaults


def detect_platform(system: Optional[str] = None, machine: Optional[str] = None) -> str:
    """Return the VS Code CLI build id for this host.

    Example:
        >>> detect_platform(system="Linux", machine="x86_64")
        'cli-alpine-x64'
    """

    system = system or platform.system()
    machine = machine or platform.machine()
    if system != "Linux":
        raise SetupError(
            f"code-tunnel is designed for Linux (SLURM clusters). Detected: {system}"
        )
    arch = ARCH_TAGS.get(machine.lower())
    if arch is None:
        raise SetupError(f"Unsupported architecture: {machine}")
    return f"cli-alpine-{arch}"


def download_command(url: str, dest: Path) -> List[str]:
    if shutil.which("curl"):
        return ["curl", "-fsSL", url, "-o", str(dest)]
    if shutil.which("wget"):
        return ["wget", "-qO", str(dest), url]
    raise SetupError(
        "Neither curl nor wget found.", hint="Please install one of them."
    )


def _run(cmd: Sequence[str], what: str) -> None:
    try:
        subprocess.run(list(cmd), check=True)
    except FileNotFoundError as exc:
        raise SetupError(f"{cmd[0]} not found while trying to {what}.") from exc
    except subprocess.CalledProcessError as exc:
        raise SetupError(
            f"Failed to {what} (exit code {exc.returncode})."
        ) from exc


def download(url: str, dest: Path) -> None:
    _run(download_command(url, dest), what=f"download {url}")


def extract_archive(archive: Path, dest: Path) -> None:
    _run(["tar", "-xzf", str(archive), "-C", str(dest)], what=f"extract {archive.name}")


def install_code_cli(platform_id: str, bin_dir: Path) -> Path:
    """Download and unpack the VS Code CLI into `bin_dir`.

    Returns:
        Path of the extracted `code` binary.

    Raises:
        SetupError: When a tool fails or the binary is missing afterwards.
    """

    url = VSCODE_DOWNLOAD_URL.format(platform=platform_id)
    with tempfile.TemporaryDirectory(prefix="code-tunnel-") as tmpdir:
        archive = Path(tmpdir) / ARCHIVE_NAME
        console.info("Downloading VS Code CLI...")
        download(url, archive)
        console.info("Extracting VS Code CLI...")
        extract_archive(archive, bin_dir)
    code_bin = bin_dir / CODE_BINARY
    if not (code_bin.is_file() and os.access(code_bin, os.X_OK)):
        raise SetupError(f"Expected binary '{code_bin}' not found after extraction.")
    return code_bin


def write_wrapper(bin_dir: Path, install_dir: Path, python: Optional[str] = None) -> Path:
    """Write the `tunnel` script that runs this package from any shell."""

    wrapper = bin_dir / WRAPPER_NAME
    interpreter = python or sys.executable
    wrapper.write_text(
        "#!/usr/bin/env sh\n"
        f'if [ -z "${{{ENV_INSTALL_DIR}:-}}" ]; then\n'
        f"    {ENV_INSTALL_DIR}={shlex.quote(str(install_dir))}\n"
        "fi\n"
        f"export {ENV_INSTALL_DIR}\n"
        f'exec {shlex.quote(interpreter)} -m code_tunnel "$@"\n',
        encoding="utf-8",
    )
    mode = wrapper.stat().st_mode
    wrapper.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return wrapper


def _update_shell_config(
    bin_dir: Path, defaults: Mapping[str, str], environ: Mapping[str, str], home: Path
) -> Tuple[Optional[Path], Optional[str]]:
    target = detect_shell_target(environ.get("SHELL"), home)
    if target is None:
        shell_name = Path(environ.get("SHELL") or "").name
        console.warn(
            f"Unknown shell '{shell_name}'. Please add {bin_dir} to your PATH manually."
        )
        return None, None
    block = build_install_block(target.dialect, bin_dir, defaults)
    existed = target.rc_file.exists()
    if upsert_block(target.rc_file, block):
        verb = "Updated" if existed else "Added"
        console.info(f"{verb} code-tunnel config in {target.rc_file}")
    else:
        console.info(f"code-tunnel config in {target.rc_file} is already up to date")
    return target.rc_file, target.name


def run_install(
    args: argparse.Namespace,
    environ: Mapping[str, str],
    home: Path,
    prompt: Callable[[str], str] = input,
) -> int:
    install_dir = Path(args.dir).expanduser()
    bin_dir = install_dir / "bin"
    previous = InstallManifest.load(install_dir)

    console.info()
    console.info("Configure default SLURM settings")
    console.info("(these can always be overridden per-invocation with flags)")
    console.info()
    defaults = collect_defaults(
        args, previous.defaults if previous else {}, prompt=prompt
    )

    platform_id = detect_platform()
    console.info(f"Detected platform: {platform_id}")
    console.info(f"Installing to: {install_dir}")
    bin_dir.mkdir(parents=True, exist_ok=True)
    install_code_cli(platform_id, bin_dir)
    write_wrapper(bin_dir, install_dir)

    rc_file: Optional[Path] = None
    shell_name: Optional[str] = None
    if not args.no_modify_rc:
        rc_file, shell_name = _update_shell_config(bin_dir, defaults, environ, home)
    InstallManifest(
        install_dir=str(install_dir),
        rc_file=str(rc_file) if rc_file else None,
        shell=shell_name,
        platform=platform_id,
        defaults=defaults,
    ).save()

    if rc_file is not None:
        console.info()
        console.info("Please restart your shell or run:")
        console.info(f"  source {rc_file}")
    print()
    console.info("============================================")
    console.info(" code-tunnel installed successfully!")
    console.info("============================================")
    console.info()
    console.info("Quick start:")
    console.info(f"  {WRAPPER_NAME} 60")
    console.info()
    console.info(f"Run '{WRAPPER_NAME} --help' for all options.")
    return 0


def scrub_shell_configs(home: Path, block: Optional[ConfigBlock] = None) -> List[Path]:
    """Remove managed lines from every known startup file.

    Returns:
        Files that were rewritten.
    """

    block = block or ConfigBlock(lines=())
    cleaned: List[Path] = []
    for rc_file in rc_candidates(home):
        if remove_block(rc_file, block):
            console.info(
                f"Removed code-tunnel config from {rc_file} "
                f"(backup at {backup_path(rc_file)})"
            )
            cleaned.append(rc_file)
    return cleaned


def run_uninstall(args: argparse.Namespace, home: Path) -> int:
    install_dir = Path(args.dir).expanduser()
    scrub_shell_configs(home)
    if install_dir.is_dir():
        console.info(f"Removing {install_dir}...")
        shutil.rmtree(install_dir)
        console.info(f"Removed {install_dir}")
    else:
        console.warn(f"Install directory {install_dir} not found; nothing to remove.")
    print()
    console.info("============================================")
    console.info(" code-tunnel uninstalled successfully.")
    console.info("============================================")
    console.info()
    console.info("Please restart your shell to update your PATH.")
    return 0
