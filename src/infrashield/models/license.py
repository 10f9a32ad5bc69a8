"""License claims and script kind models."""

from __future__ import annotations

from datetime import date
from enum import Enum

from pydantic import BaseModel


class ScriptKind(str, Enum):
    POSIX_SHELL = "posix-shell"
    POWERSHELL = "powershell"
    PYTHON = "python"
    UNSUPPORTED = "unsupported"

    @classmethod
    def from_filename(cls, filename: str) -> ScriptKind:
        """Select the kind from a file extension (case-insensitive)."""
        lowered = filename.lower()
        for suffix, kind in _EXTENSIONS.items():
            if lowered.endswith(suffix):
                return kind
        return cls.UNSUPPORTED


_EXTENSIONS = {
    ".sh": ScriptKind.POSIX_SHELL,
    ".bash": ScriptKind.POSIX_SHELL,
    ".ps1": ScriptKind.POWERSHELL,
    ".py": ScriptKind.PYTHON,
}


class LicenseClaims(BaseModel):
    """The facts signed into a license header: who, what, until when."""

    client_id: str
    client_email: str
    script_id: int
    script_name: str
    expires_at: date
    generated_at: date


class IssuedLicense(BaseModel):
    license_id: str
    claims: LicenseClaims
