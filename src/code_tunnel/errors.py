from __future__ import annotations


class CodeTunnelError(Exception):
    """Base class for failures reported as a single tagged line."""


class UsageError(CodeTunnelError):
    """Unknown flag, missing flag value or an extra positional argument."""


class ValidationError(CodeTunnelError):
    """A resolved setting is missing or malformed."""


class SetupError(CodeTunnelError):
    """A required tool, binary or platform is not available.

    Args:
        message: What is missing.
        hint: Optional remediation appended to the message.
    """

    def __init__(self, message: str, hint: str = "") -> None:
        super().__init__(f"{message} {hint}".strip())
        self.hint = hint
