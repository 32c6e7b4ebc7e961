from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Mapping, NoReturn, Optional, Sequence, Tuple

from code_tunnel.constants import (
    DEFAULT_CPUS,
    DEFAULT_GPUS,
    DEFAULT_NODES,
    DEFAULT_NTASKS,
    DEFAULT_SESSION,
    ENV_INSTALL_DIR,
    ENV_PREFIX,
    MINUTES_PROMPT,
)
from code_tunnel.errors import UsageError, ValidationError
from code_tunnel.format_utils import (
    end_timestamp,
    format_timestamp,
    minutes_to_slurm_time,
    parse_positive_int,
)


@dataclass(frozen=True)
class EnvSetting:
    """One run setting that can be supplied through the environment.

    Args:
        dest: Attribute name on the parsed namespace.
        suffix: Environment variable name without the ``CODE_TUNNEL_`` prefix.
        flags: Flag spelling shown in help and error messages.
        description: Short help text.
    """

    dest: str
    suffix: str
    flags: str
    description: str

    @property
    def env_name(self) -> str:
        return f"{ENV_PREFIX}{self.suffix}"


ENV_SETTINGS: Tuple[EnvSetting, ...] = (
    EnvSetting("account", "ACCOUNT", "-a/--account", "SLURM account"),
    EnvSetting("partition", "PARTITION", "-p/--partition", "SLURM partition"),
    EnvSetting("cpus", "CPUS", "-c/--cpus", "CPUs per task"),
    EnvSetting("gpus", "GPUS", "-g/--gpus", "GPU resource spec"),
    EnvSetting("mem", "MEM", "-m/--mem", "Memory (e.g. 16G)"),
    EnvSetting("qos", "QOS", "-q/--qos", "Quality of service"),
    EnvSetting("nodes", "NODES", "--nodes", "Number of nodes"),
    EnvSetting("ntasks", "NTASKS", "--ntasks", "Number of tasks"),
    EnvSetting("session", "SESSION", "--session", "Screen session name"),
    EnvSetting("extra_args", "EXTRA_ARGS", "--extra", "Additional srun args"),
    EnvSetting("minutes", "MINUTES", "MINUTES", "Session length in minutes"),
)
SETTINGS_BY_DEST = {setting.dest: setting for setting in ENV_SETTINGS}


@dataclass(frozen=True)
class TunnelConfig:
    """Resolved settings for one tunnel launch.

    Args:
        account: SLURM account to charge.
        partition: SLURM partition to run in.
        minutes: Session length in minutes.
        cpus: CPUs per task.
        gpus: Generic resource spec passed to ``--gres``.
        mem: Memory request, or ``None`` for the scheduler default.
        qos: Quality of service, or ``None`` to omit.
        nodes: Node count.
        ntasks: Task count.
        session: Screen session name.
        extra_args: Extra ``srun`` tokens appended before ``--pty``.

    Example:
        >>> TunnelConfig(account="acme", partition="gpu", minutes=90).time_str
        '01:30:00'
    """

    account: str
    partition: str
    minutes: int
    cpus: int = DEFAULT_CPUS
    gpus: str = DEFAULT_GPUS
    mem: Optional[str] = None
    qos: Optional[str] = None
    nodes: int = DEFAULT_NODES
    ntasks: int = DEFAULT_NTASKS
    session: str = DEFAULT_SESSION
    extra_args: Tuple[str, ...] = ()

    @property
    def time_str(self) -> str:
        return minutes_to_slurm_time(self.minutes)


@dataclass(frozen=True)
class SessionWindow:
    """Start/end text for the banner printed inside the Screen session."""

    start: str
    end: str
    minutes: int

    @property
    def time_str(self) -> str:
        return minutes_to_slurm_time(self.minutes)

    def banner(self) -> str:
        rule = "=" * 37
        return (
            f"{rule}\n"
            f"Start:          {self.start}\n"
            f"Session length: {self.minutes} minutes ({self.time_str})\n"
            f"End:            {self.end}\n"
            f"{rule}\n"
        )


def session_window(minutes: int, now: Optional[datetime] = None) -> SessionWindow:
    """Compute the banner timestamps for a session starting at `now`.

    Args:
        minutes: Session length.
        now: Start time; defaults to the current local time.

    Returns:
        Window whose `end` falls back to a placeholder when out of range.
    """

    start = now if now is not None else datetime.now()
    return SessionWindow(
        start=format_timestamp(start),
        end=end_timestamp(start, minutes),
        minutes=minutes,
    )


class StrictArgumentParser(argparse.ArgumentParser):
    """Argument parser that raises `UsageError` instead of exiting."""

    def error(self, message: str) -> NoReturn:
        raise UsageError(message)


def _env_epilog() -> str:
    rows = [f"  {setting.env_name:<24} {setting.flags}" for setting in ENV_SETTINGS]
    rows.append(f"  {ENV_INSTALL_DIR:<24} install directory holding bin/code")
    return (
        "Environment variables:\n"
        + "\n".join(rows)
        + "\n\nAny option set via a flag takes precedence over the corresponding\n"
        "environment variable.\n\n"
        "Examples:\n"
        "  code-tunnel 60\n"
        "  code-tunnel -a myaccount -p gpu -q high 120\n"
        "  CODE_TUNNEL_ACCOUNT=myacct code-tunnel 90"
    )


def build_run_parser() -> argparse.ArgumentParser:
    """Build the parser for launching a tunnel.

    Example:
        >>> build_run_parser().parse_args(["-a", "acme", "90"]).account
        'acme'
    """

    parser = StrictArgumentParser(
        prog="code-tunnel",
        description=(
            "Launch a VS Code tunnel inside a SLURM interactive GPU job. "
            "See also: code-tunnel install, code-tunnel uninstall."
        ),
        epilog=_env_epilog(),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        allow_abbrev=False,
    )
    parser.add_argument("minutes", nargs="?", help="Session length in minutes")
    parser.add_argument("-a", "--account", help="SLURM account")
    parser.add_argument("-p", "--partition", help="SLURM partition")
    parser.add_argument("-c", "--cpus", help=f"CPUs per task (default: {DEFAULT_CPUS})")
    parser.add_argument("-g", "--gpus", help=f"GPU resource spec (default: {DEFAULT_GPUS})")
    parser.add_argument("-m", "--mem", help="Memory, e.g. 16G (default: SLURM default)")
    parser.add_argument("-q", "--qos", help="Quality of service (default: none)")
    parser.add_argument("--nodes", help=f"Number of nodes (default: {DEFAULT_NODES})")
    parser.add_argument("--ntasks", help=f"Number of tasks (default: {DEFAULT_NTASKS})")
    parser.add_argument(
        "--session", help=f"Screen session name (default: {DEFAULT_SESSION})"
    )
    parser.add_argument(
        "--extra", dest="extra_args", metavar="ARGS", help="Additional srun args"
    )
    parser.add_argument(
        "--dry-run", action="store_true", help="Print the srun command and exit"
    )
    return parser


def _value_flags() -> Dict[str, str]:
    flags: Dict[str, str] = {}
    for setting in ENV_SETTINGS:
        if not setting.flags.startswith("-"):
            continue
        spellings = setting.flags.split("/")
        for spelling in spellings:
            flags[spelling] = spellings[-1]
    return flags


VALUE_FLAGS = _value_flags()


def join_flag_values(argv: Sequence[str]) -> List[str]:
    """Bind each value-taking flag to the token after it, whatever it looks like.

    Example:
        >>> join_flag_values(["--extra", "--exclusive", "-a", "acme", "30"])
        ['--extra=--exclusive', '--account=acme', '30']
    """

    joined: List[str] = []
    tokens = iter(argv)
    for token in tokens:
        if token == "--":
            joined.append(token)
            joined.extend(tokens)
            break
        long_flag = VALUE_FLAGS.get(token)
        value = next(tokens, None) if long_flag else None
        if value is None:
            joined.append(token)
            continue
        joined.append(f"{long_flag}={value}")
    return joined


def parse_run_args(argv: Sequence[str]) -> argparse.Namespace:
    """Parse run-path arguments, rejecting anything the parser does not know.

    Raises:
        UsageError: For unknown options, missing values or extra positionals.

    Example:
        >>> parse_run_args(["--nodes", "2", "30"]).minutes
        '30'
    """

    args, extras = build_run_parser().parse_known_args(args=join_flag_values(argv))
    if extras:
        token = extras[0]
        if token.startswith("-"):
            raise UsageError(f"unrecognized option: {token}")
        raise UsageError(f"unexpected argument: {token}")
    return args


def pick_value(dest: str, flag_value: Optional[str], environ: Mapping[str, str]) -> Optional[str]:
    """Return the flag value if given, else a non-empty environment value."""

    if flag_value is not None:
        return flag_value
    env_value = environ.get(SETTINGS_BY_DEST[dest].env_name)
    if env_value:
        return env_value
    return None


def _required(dest: str, raw: Optional[str]) -> str:
    value = (raw or "").strip()
    if not value:
        setting = SETTINGS_BY_DEST[dest]
        raise ValidationError(
            f"{setting.description} is required. "
            f"Set {setting.env_name} or use {setting.flags}."
        )
    return value


def _positive(dest: str, raw: Optional[str], default: int) -> int:
    if raw is None:
        return default
    value = parse_positive_int(raw)
    if value is None:
        setting = SETTINGS_BY_DEST[dest]
        raise ValidationError(
            f"{setting.flags} must be a positive integer, got: {raw!r}"
        )
    return value


def _optional(raw: Optional[str]) -> Optional[str]:
    if raw is None:
        return None
    value = raw.strip()
    return value or None


def _read_prompt(prompt: Callable[[str], str]) -> str:
    try:
        return prompt(MINUTES_PROMPT)
    except EOFError:
        return ""


def resolve_minutes(
    raw: Optional[str],
    prompt: Callable[[str], str] = input,
) -> int:
    """Validate the session length, prompting when nothing was supplied.

    Raises:
        ValidationError: When the value is not digits or is below one.
    """

    if raw is None:
        raw = _read_prompt(prompt)
    minutes = parse_positive_int(raw)
    if minutes is None:
        raise ValidationError(
            f"invalid duration: minutes must be a positive integer, got: {raw!r}"
        )
    return minutes


def resolve_options(
    args: argparse.Namespace,
    environ: Mapping[str, str],
    prompt: Callable[[str], str] = input,
) -> TunnelConfig:
    """Merge flags, environment and defaults into a `TunnelConfig`.

    Args:
        args: Namespace from `parse_run_args`.
        environ: Environment mapping, usually `os.environ`.
        prompt: Line reader used when the session length is missing.

    Returns:
        Fully validated configuration.

    Raises:
        ValidationError: Missing account/partition or malformed numbers.

    Example:
        >>> args = parse_run_args(["-a", "acme", "-p", "gpu", "90"])
        >>> resolve_options(args, environ={}).cpus
        2
    """

    def pick(dest: str) -> Optional[str]:
        return pick_value(dest, getattr(args, dest), environ)

    account = _required("account", pick("account"))
    partition = _required("partition", pick("partition"))
    cpus = _positive("cpus", pick("cpus"), DEFAULT_CPUS)
    nodes = _positive("nodes", pick("nodes"), DEFAULT_NODES)
    ntasks = _positive("ntasks", pick("ntasks"), DEFAULT_NTASKS)
    gpus = _optional(pick("gpus")) or DEFAULT_GPUS
    session = _optional(pick("session")) or DEFAULT_SESSION
    extra = pick("extra_args")
    minutes = resolve_minutes(pick("minutes"), prompt=prompt)
    return TunnelConfig(
        account=account,
        partition=partition,
        minutes=minutes,
        cpus=cpus,
        gpus=gpus,
        mem=_optional(pick("mem")),
        qos=_optional(pick("qos")),
        nodes=nodes,
        ntasks=ntasks,
        session=session,
        extra_args=tuple(extra.split()) if extra else (),
    )
