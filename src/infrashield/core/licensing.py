"""License stamping for downloaded scripts.

Signs the purchase claims with the server secret and rewrites the script
header so it carries the license block, a watermark and a runtime expiry
check. Each script kind owns its header template.

Signed payload (v1), fields in this exact order::

    ist-license-v1|client_id:<len>:<value>|script_id:<len>:<value>|
    expires_at:<len>:<YYYY-MM-DD>|generated_at:<len>:<YYYY-MM-DD>

(one line, no whitespace). Verification must rebuild it the same way.
"""

from __future__ import annotations

import ast
import hashlib
import hmac
import re
from dataclasses import dataclass
from typing import Callable

from ..models.license import LicenseClaims, ScriptKind
from .config import LicenseSettings

PAYLOAD_VERSION = "ist-license-v1"
WATERMARK_DOMAIN = b"ist-watermark-v1"

_CODING_RE = re.compile(r"^[ \t\f]*#.*?coding[:=][ \t]*[-\w.]+")


def canonical_payload(claims: LicenseClaims) -> bytes:
    """Serialize the signed claim fields in their fixed order."""
    fields = [
        ("client_id", claims.client_id),
        ("script_id", str(claims.script_id)),
        ("expires_at", claims.expires_at.isoformat()),
        ("generated_at", claims.generated_at.isoformat()),
    ]
    parts = [PAYLOAD_VERSION] + [f"{name}:{len(value)}:{value}" for name, value in fields]
    return "|".join(parts).encode("utf-8")


def script_kind_for_filename(filename: str) -> ScriptKind:
    return ScriptKind.from_filename(filename)


# ---------------------------------------------------------------------------
# Per-kind header templates
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class HeaderTemplate:
    directive: str
    render_check: Callable[[str, str, str], str]
    split_prologue: Callable[[str], tuple[str, str]]
    keeps_coding_line: bool = False


def _no_prologue(body: str) -> tuple[str, str]:
    return "", body


def _split_coding_line(text: str) -> tuple[str, str]:
    """Take out a PEP 263 encoding declaration from the first two lines."""
    lines = text.split("\n", 2)
    for idx, line in enumerate(lines[:2]):
        if _CODING_RE.match(line):
            rest = lines[:idx] + lines[idx + 1:]
            return line.rstrip("\r") + "\n", "\n".join(rest)
        # Line 2 only counts when line 1 is a comment or blank
        if line.strip() and not line.lstrip().startswith("#"):
            break
    return "", text


def _python_prologue(body: str) -> tuple[str, str]:
    """Move top-level `from __future__` imports ahead of the license check."""
    try:
        tree = ast.parse(body)
    except (SyntaxError, ValueError):
        return "", body

    hoisted: set[int] = set()
    for node in tree.body:
        if isinstance(node, ast.ImportFrom) and node.module == "__future__":
            hoisted.update(range(node.lineno - 1, node.end_lineno))
    if not hoisted:
        return "", body

    lines = body.split("\n")
    prologue = [lines[i] for i in sorted(hoisted)]
    rest = [line for i, line in enumerate(lines) if i not in hoisted]
    return "\n".join(prologue) + "\n", "\n".join(rest)


def _powershell_prologue(body: str) -> tuple[str, str]:
    """Move a leading [CmdletBinding()] / param(...) block ahead of the check.

    Comments, #Requires lines and comment-based help above the block move
    with it.
    """
    pos = 0
    length = len(body)
    while pos < length:
        line_end = body.find("\n", pos)
        line_end = length if line_end == -1 else line_end + 1
        stripped = body[pos:line_end].strip()
        if stripped.startswith("<#"):
            close = body.find("#>", pos + 2)
            if close == -1:
                return "", body
            line_end = body.find("\n", close)
            line_end = length if line_end == -1 else line_end + 1
        elif stripped and not stripped.startswith("#"):
            break
        pos = line_end

    match = re.match(r"(\s*\[CmdletBinding[^\]]*\]\s*)?param\s*\(", body[pos:], re.IGNORECASE)
    if not match:
        return "", body

    depth = 0
    idx = pos + match.end() - 1
    while idx < length:
        char = body[idx]
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth == 0:
                break
        idx += 1
    if depth != 0:
        return "", body

    end = body.find("\n", idx)
    end = length if end == -1 else end + 1
    prologue = body[:end]
    if not prologue.endswith("\n"):
        prologue += "\n"
    return prologue, body[end:]


def _shell_check(expires: str, vendor_name: str, vendor_url: str) -> str:
    compact = expires.replace("-", "")
    return f"""# Verification de licence - Ne pas modifier
_ist_verify_license() {{
  _ist_exp="{expires}"
  _ist_today=$(date +%Y%m%d)
  case "$_ist_today" in
    ''|*[!0-9]*)
      echo "Verification de licence impossible: date systeme illisible"
      exit 1
      ;;
  esac
  if [ "$_ist_today" -gt {compact} ]; then
    echo ""
    echo "================================================================"
    echo " LICENCE EXPIREE"
    echo " Votre licence a expire le $_ist_exp"
    echo " Renouvelez votre abonnement sur {vendor_url}"
    echo "================================================================"
    echo ""
    exit 1
  fi
}}
_ist_verify_license
"""


def _powershell_check(expires: str, vendor_name: str, vendor_url: str) -> str:
    return f"""# Verification de licence - Ne pas modifier
function Test-ISTLicense {{
    $expDate = [DateTime]::ParseExact("{expires}", "yyyy-MM-dd", $null)
    if ((Get-Date).Date -gt $expDate) {{
        Write-Host ""
        Write-Host "================================================================"
        Write-Host " LICENCE EXPIREE"
        Write-Host " Votre licence a expire le {expires}"
        Write-Host " Renouvelez votre abonnement sur {vendor_url}"
        Write-Host "================================================================"
        Write-Host ""
        exit 1
    }}
}}
Test-ISTLicense
"""


def _python_check(expires: str, vendor_name: str, vendor_url: str) -> str:
    return f"""# Verification de licence - Ne pas modifier
def _ist_verify_license():
    import datetime
    import sys

    if datetime.date.today() > datetime.date.fromisoformat("{expires}"):
        print("")
        print("================================================================")
        print(" LICENCE EXPIREE")
        print(" Votre licence a expire le {expires}")
        print(" Renouvelez votre abonnement sur {vendor_url}")
        print("================================================================")
        print("")
        sys.exit(1)


_ist_verify_license()
del _ist_verify_license
"""


HEADER_TEMPLATES: dict[ScriptKind, HeaderTemplate] = {
    ScriptKind.POSIX_SHELL: HeaderTemplate("#!/bin/bash", _shell_check, _no_prologue),
    ScriptKind.POWERSHELL: HeaderTemplate("#!/usr/bin/env pwsh", _powershell_check, _powershell_prologue),
    ScriptKind.PYTHON: HeaderTemplate(
        "#!/usr/bin/env python3", _python_check, _python_prologue, keeps_coding_line=True
    ),
}


# ---------------------------------------------------------------------------
# Stamper
# ---------------------------------------------------------------------------

class LicenseStamper:
    """Signs license claims and injects license headers into scripts.

    Built once at startup with the server secret; safe to share across
    threads since it holds no mutable state.
    """

    def __init__(self, secret: bytes, settings: LicenseSettings | None = None):
        if not secret:
            raise ValueError("License secret must not be empty")
        self._secret = secret
        self.settings = settings or LicenseSettings()

    def sign(self, claims: LicenseClaims) -> str:
        digest = hmac.new(self._secret, canonical_payload(claims), hashlib.sha256).hexdigest()
        return digest[: self.settings.signature_length]

    def verify_signature(self, claims: LicenseClaims, signature: str) -> bool:
        return hmac.compare_digest(self.sign(claims), signature)

    def license_id(self, claims: LicenseClaims, signature: str) -> str:
        return (
            f"{self.settings.license_id_prefix}-{claims.generated_at.year}-"
            f"{claims.script_id:04d}-{signature[:8].upper()}"
        )

    def watermark(self, client_id: str, client_email: str) -> str:
        """Keyed one-way fingerprint of the purchaser."""
        message = b"|".join([
            WATERMARK_DOMAIN,
            client_id.encode("utf-8") + b"\x00" + client_email.strip().lower().encode("utf-8"),
        ])
        digest = hmac.new(self._secret, message, hashlib.sha256).hexdigest()
        return digest[: self.settings.watermark_length]

    def verify_watermark(self, watermark: str, client_id: str, client_email: str) -> bool:
        return hmac.compare_digest(self.watermark(client_id, client_email), watermark)

    def render_banner(self, claims: LicenseClaims) -> str:
        signature = self.sign(claims)
        rule = "#" + "=" * 64
        return "\n".join([
            rule,
            f"# {self.settings.vendor_name} - Script sous licence",
            f"# {self.settings.vendor_url}",
            rule,
            f"# Licence: {self.license_id(claims, signature)}",
            f"# Client: {claims.client_email}",
            f"# Expire: {claims.expires_at.isoformat()}",
            f"# Genere: {claims.generated_at.isoformat()}",
            f"# WM: {self.watermark(claims.client_id, claims.client_email)}",
            f"# Sig: {signature}",
            rule,
            "",
        ])

    def render_header(
        self,
        claims: LicenseClaims,
        kind: ScriptKind,
        prologue: str = "",
        coding_line: str = "",
    ) -> str:
        """Directive, banner, hoisted prologue and expiry check for a kind."""
        template = HEADER_TEMPLATES[kind]
        check = template.render_check(
            claims.expires_at.isoformat(),
            self.settings.vendor_name,
            self.settings.vendor_url,
        )
        return (
            f"{template.directive}\n{coding_line}{self.render_banner(claims)}"
            f"{prologue}\n{check}\n"
        )

    def stamp(self, raw: bytes, claims: LicenseClaims, kind: ScriptKind) -> bytes:
        """Return the licensed script, or ``raw`` untouched for unsupported kinds."""
        template = HEADER_TEMPLATES.get(kind)
        if template is None:
            return raw

        text = raw.decode("utf-8", errors="surrogateescape")
        if text.startswith("\ufeff"):
            text = text[1:]
        coding_line = ""
        if template.keeps_coding_line:
            coding_line, text = _split_coding_line(text)
        # The header brings its own interpreter line
        if text.startswith("#!"):
            newline = text.find("\n")
            text = "" if newline == -1 else text[newline + 1:]

        prologue, body = template.split_prologue(text)
        stamped = self.render_header(claims, kind, prologue, coding_line) + body
        return stamped.encode("utf-8", errors="surrogateescape")
