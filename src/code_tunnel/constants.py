from __future__ import annotations

from pathlib import Path

# Tag used for every console message
TAG = "[code-tunnel]"

# Environment variable naming
ENV_PREFIX = "CODE_TUNNEL_"
ENV_INSTALL_DIR = "CODE_TUNNEL_DIR"

# Default resource selections
DEFAULT_CPUS = 2
DEFAULT_GPUS = "gpu:1"
DEFAULT_NODES = 1
DEFAULT_NTASKS = 1
DEFAULT_SESSION = "vscode-tunnel"

# Session banner
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
UNAVAILABLE_TIMESTAMP = "(could not compute)"
MINUTES_PROMPT = "Enter number of minutes for the job: "

# External tools
SRUN = "srun"
SCREEN = "screen"
CODE_BINARY = "code"
WRAPPER_NAME = "tunnel"
TUNNEL_SHELL_COMMAND = 'echo "$TUNNEL_INFO"; "$CODE_BIN" tunnel; exec bash'

# Installation layout
DEFAULT_INSTALL_DIR = Path.home() / ".vscode-tunnel"
MANIFEST_NAME = "install.json"
VSCODE_DOWNLOAD_URL = "https://code.visualstudio.com/sha/download?build=stable&os={platform}"
ARCHIVE_NAME = "vscode_cli.tar.gz"

# Shell config markers
BEGIN_MARKER = "# >>> code-tunnel >>>"
END_MARKER = "# <<< code-tunnel <<<"
LEGACY_MARKER = "# Added by code-tunnel installer"
BACKUP_SUFFIX = "code-tunnel-backup"
