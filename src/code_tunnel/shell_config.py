"""Managed blocks in shell startup files.

The text functions take a whole file as a string and return the new string;
`upsert_block` and `remove_block` wrap them with read, backup and write.
"""

from __future__ import annotations

import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from code_tunnel.constants import (
    BACKUP_SUFFIX,
    BEGIN_MARKER,
    END_MARKER,
    ENV_PREFIX,
    LEGACY_MARKER,
)

# Order in which installer defaults are written to the block
DEFAULT_EXPORT_ORDER = (
    "ACCOUNT",
    "PARTITION",
    "QOS",
    "CPUS",
    "GPUS",
    "MEM",
    "NODES",
    "NTASKS",
)


@dataclass(frozen=True)
class ConfigBlock:
    """Sentinel-delimited lines owned by the installer.

    Args:
        lines: Body lines without terminators.
        begin: Line that opens the block.
        end: Line that closes the block.
        legacy: Marker text of the older single-line format.
    """

    lines: Tuple[str, ...]
    begin: str = BEGIN_MARKER
    end: str = END_MARKER
    legacy: str = LEGACY_MARKER

    def rendered(self) -> List[str]:
        return [f"{line}\n" for line in (self.begin, *self.lines, self.end)]


@dataclass(frozen=True)
class ShellDialect:
    """Syntax for one family of shells.

    Args:
        name: Dialect tag (`posix` or `fish`).
        export: Renders ``NAME``/``VALUE`` as one assignment line.
        prepend_path: Renders one line putting a directory first on PATH.
    """

    name: str
    export: Callable[[str, str], str]
    prepend_path: Callable[[str], str]


@dataclass(frozen=True)
class ShellTarget:
    name: str
    dialect: ShellDialect
    rc_file: Path


_POSIX_SPECIAL = ("\\", '"', "$", "`")
_FISH_SPECIAL = ("\\", '"', "$")


def _escape(value: str, specials: Sequence[str]) -> str:
    for char in specials:
        value = value.replace(char, f"\\{char}")
    return value


POSIX = ShellDialect(
    name="posix",
    export=lambda name, value: f'export {name}="{_escape(value, _POSIX_SPECIAL)}"',
    prepend_path=lambda directory: (
        f'export PATH="{_escape(directory, _POSIX_SPECIAL)}:$PATH"'
    ),
)
FISH = ShellDialect(
    name="fish",
    export=lambda name, value: f'set -gx {name} "{_escape(value, _FISH_SPECIAL)}"',
    prepend_path=lambda directory: (
        f'set -gx PATH "{_escape(directory, _FISH_SPECIAL)}" $PATH'
    ),
)
DIALECTS: Dict[str, ShellDialect] = {"bash": POSIX, "zsh": POSIX, "fish": FISH}


def rc_candidates(home: Path) -> List[Path]:
    """Return every startup file that may carry a managed block."""

    return [
        home / ".bashrc",
        home / ".bash_profile",
        home / ".zshrc",
        home / ".config" / "fish" / "config.fish",
        home / ".profile",
    ]


def detect_shell_target(shell_path: Optional[str], home: Path) -> Optional[ShellTarget]:
    """Pick the startup file to edit for the user's login shell.

    Args:
        shell_path: Value of ``$SHELL``; bash is assumed when unset.
        home: Home directory to resolve startup files against.

    Returns:
        Target descriptor, or ``None`` for shells without a known dialect.

    Example:
        >>> detect_shell_target("/usr/bin/fish", Path("/home/u")).rc_file
        PosixPath('/home/u/.config/fish/config.fish')
    """

    name = Path(shell_path or "/bin/bash").name
    dialect = DIALECTS.get(name)
    if dialect is None:
        return None
    if name == "bash":
        rc_file = home / ".bashrc"
        if not rc_file.exists() and (home / ".bash_profile").exists():
            rc_file = home / ".bash_profile"
    elif name == "zsh":
        rc_file = home / ".zshrc"
    else:
        rc_file = home / ".config" / "fish" / "config.fish"
    return ShellTarget(name=name, dialect=dialect, rc_file=rc_file)


def build_install_block(
    dialect: ShellDialect,
    bin_dir: Path,
    defaults: Mapping[str, str],
) -> ConfigBlock:
    """Build the PATH line plus one export per non-empty default.

    Args:
        dialect: Shell syntax to render.
        bin_dir: Directory holding the `code` binary and `tunnel` wrapper.
        defaults: Values keyed by suffix (``ACCOUNT``) or full variable name.
    """

    lines = [dialect.prepend_path(str(bin_dir))]
    for suffix in DEFAULT_EXPORT_ORDER:
        name = f"{ENV_PREFIX}{suffix}"
        value = defaults.get(suffix) or defaults.get(name)
        if value:
            lines.append(dialect.export(name, value))
    return ConfigBlock(lines=tuple(lines))


def _bare(line: str) -> str:
    return line.rstrip("\r\n")


def _is_blank(line: str) -> bool:
    return not _bare(line).strip()


def has_managed_content(content: str, block: ConfigBlock) -> bool:
    for line in content.splitlines():
        if line == block.begin or block.legacy in line:
            return True
    return False


def _strip_managed(
    lines: Sequence[str], block: ConfigBlock
) -> Tuple[List[str], Optional[int], bool]:
    """Drop every sentinel span and legacy line.

    Returns:
        Remaining lines, the index where the first span started (in the
        remaining lines), and whether the last span ran to end of file.
    """

    kept: List[str] = []
    first_span: Optional[int] = None
    inside = False
    trailing_span = False
    for line in lines:
        bare = _bare(line)
        if inside:
            if bare == block.end:
                inside = False
            continue
        if bare == block.begin:
            inside = True
            if first_span is None:
                first_span = len(kept)
            trailing_span = True
            continue
        if block.legacy in bare:
            continue
        kept.append(line)
        trailing_span = False
    return kept, first_span, trailing_span


def upsert_block_text(content: str, block: ConfigBlock) -> str:
    """Insert `block` into `content`, or replace the existing one in place.

    Example:
        >>> upsert_block_text("A\\n", ConfigBlock(lines=("x",), begin="#b", end="#e"))
        'A\\n\\n#b\\nx\\n#e\\n'
    """

    kept, first_span, _ = _strip_managed(content.splitlines(keepends=True), block)
    if first_span is not None:
        return "".join(kept[:first_span] + block.rendered() + kept[first_span:])
    if kept and not kept[-1].endswith(("\n", "\r")):
        kept[-1] += "\n"
    if kept and not _is_blank(kept[-1]):
        kept.append("\n")
    return "".join(kept + block.rendered())


def remove_block_text(content: str, block: ConfigBlock) -> Tuple[str, bool]:
    """Remove the managed span and legacy lines from `content`.

    A blank line directly before a block that ends the file goes with it,
    so removing what `upsert_block_text` appended restores the original. Two
    inputs do not round-trip exactly: content already ending in a blank line
    loses that line (``"A\\n\\n"`` becomes ``"A\\n"``), and content without a
    final newline keeps the one added on upsert (``"A"`` becomes ``"A\\n"``).

    Returns:
        New content and whether anything was removed. Untouched content is
        returned as-is when nothing matched.
    """

    if not has_managed_content(content, block):
        return content, False
    kept, first_span, trailing_span = _strip_managed(
        content.splitlines(keepends=True), block
    )
    if (
        first_span is not None
        and trailing_span
        and first_span == len(kept)
        and kept
        and _is_blank(kept[-1])
    ):
        kept.pop()
    return "".join(kept), True


def backup_path(path: Path) -> Path:
    return path.with_name(f"{path.name}.{BACKUP_SUFFIX}")


def _backup(path: Path) -> Path:
    target = backup_path(path)
    shutil.copy2(path, target)
    return target


# newline="" keeps CRLF and other terminators byte-for-byte; surrogateescape
# carries bytes that are not UTF-8 through unchanged
def _read(path: Path) -> str:
    with open(path, "r", encoding="utf-8", errors="surrogateescape", newline="") as handle:
        return handle.read()


def _write(path: Path, content: str) -> None:
    with open(path, "w", encoding="utf-8", errors="surrogateescape", newline="") as handle:
        handle.write(content)


def upsert_block(path: Path, block: ConfigBlock) -> bool:
    """Write `block` into the file at `path`.

    Returns:
        True when the file was created or its content changed.
    """

    existed = path.exists()
    content = _read(path) if existed else ""
    updated = upsert_block_text(content, block)
    if existed and updated == content:
        return False
    if existed:
        _backup(path)
    else:
        path.parent.mkdir(parents=True, exist_ok=True)
    _write(path, updated)
    return True


def remove_block(path: Path, block: ConfigBlock) -> bool:
    """Strip the managed block from `path`, backing the file up first.

    Returns:
        True when something was removed; missing files and files without
        managed lines are left alone.
    """

    if not path.exists():
        return False
    content = _read(path)
    updated, removed = remove_block_text(content, block)
    if not removed:
        return False
    _backup(path)
    _write(path, updated)
    return True
