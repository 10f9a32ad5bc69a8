"""Check snippets for controls attached to a toolkit.

A predefined template is used when one exists for the control id and the
toolkit's script language; otherwise a manual-verification stub is rendered.
"""

from __future__ import annotations

import re
from functools import lru_cache
from importlib import resources
from typing import Optional

import yaml

from ..models.control import SecurityControl
from ..models.license import ScriptKind

POWERSHELL_PLATFORMS = {"windows", "web", "vmware"}


def script_language_for_platform(platform: str) -> str:
    """Get the check language for a platform: 'powershell' or 'bash'."""
    if (platform or "").lower() in POWERSHELL_PLATFORMS:
        return "powershell"
    return "bash"


_KIND_LANGUAGES = {
    ScriptKind.POWERSHELL: "powershell",
    ScriptKind.POSIX_SHELL: "bash",
    ScriptKind.PYTHON: "python",
}


def script_language_for_toolkit(filename: str, platform: str) -> str:
    """Check language matching the toolkit's script file.

    Falls back to the platform default when the extension is not a script.
    """
    language = _KIND_LANGUAGES.get(ScriptKind.from_filename(filename or ""))
    return language or script_language_for_platform(platform)


@lru_cache(maxsize=1)
def load_templates() -> dict[tuple[str, str], str]:
    """Load bundled templates keyed by (control_id, language)."""
    templates: dict[tuple[str, str], str] = {}
    data_pkg = resources.files("infrashield.data.templates")
    for entry in sorted(data_pkg.iterdir(), key=lambda e: e.name):
        if not entry.name.endswith(".yaml"):
            continue
        content = yaml.safe_load(entry.read_text(encoding="utf-8")) or {}
        for tpl in content.get("templates") or []:
            key = (tpl["control_id"], tpl.get("language", "bash"))
            templates[key] = tpl["code"].rstrip("\n")
    return templates


def get_template_code(control_id: str, language: str) -> Optional[str]:
    return load_templates().get((control_id, language))


def _quote_ps(value: str) -> str:
    return value.replace('"', '`"').replace("$", "`$")


def _quote_json(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("'", "")


def _render_powershell_stub(control: SecurityControl) -> str:
    func = "Test-" + re.sub(r"[^a-zA-Z0-9]", "", control.id)
    return "\n".join([
        f"# {control.id}: {control.name}",
        f"# {control.description}",
        f"# Reference: {control.reference}",
        f"# Severity: {control.severity.value}",
        f"function {func} {{",
        f"    # Category: {control.category}",
        "    return @{",
        '        Status = "MANUAL"',
        f'        ControlId = "{_quote_ps(control.id)}"',
        f'        Name = "{_quote_ps(control.name)}"',
        f'        Description = "{_quote_ps(control.description)}"',
        '        Recommendation = "Manual verification required"',
        "    }",
        "}",
        f'$results["{control.id}"] = {func}',
    ])


def _render_bash_stub(control: SecurityControl) -> str:
    func = "check_" + re.sub(r"[^a-z0-9]", "_", control.id.lower())
    payload = (
        f'{{"status":"MANUAL","controlId":"{_quote_json(control.id)}",'
        f'"name":"{_quote_json(control.name)}",'
        f'"recommendation":"Manual verification required"}}'
    )
    return "\n".join([
        f"# {control.id}: {control.name}",
        f"# {control.description}",
        f"# Reference: {control.reference}",
        f"# Severity: {control.severity.value}",
        f"{func}() {{",
        f"    # Category: {control.category}",
        f"    echo '{payload}'",
        "}",
        f'results["{control.id}"]=$({func})',
    ])


def _render_python_stub(control: SecurityControl) -> str:
    func = "check_" + re.sub(r"[^a-z0-9]", "_", control.id.lower())
    return "\n".join([
        f"# {control.id}: {control.name}",
        f"# {control.description}",
        f"# Reference: {control.reference}",
        f"# Severity: {control.severity.value}",
        f"def {func}():",
        f"    # Category: {control.category}",
        "    return {",
        '        "status": "MANUAL",',
        f'        "controlId": {control.id!r},',
        f'        "name": {control.name!r},',
        f'        "description": {control.description!r},',
        '        "recommendation": "Manual verification required",',
        "    }",
        "",
        "",
        f'globals().setdefault("results", {{}})[{control.id!r}] = {func}()',
    ])


_STUB_RENDERERS = {
    "powershell": _render_powershell_stub,
    "bash": _render_bash_stub,
    "python": _render_python_stub,
}


def generate_control_code(control: SecurityControl, language: str) -> str:
    """Build the check snippet for a control in a script language.

    ``language`` is one of 'powershell', 'bash' or 'python'; see
    :func:`script_language_for_toolkit`.
    """
    code = get_template_code(control.id, language)
    if code:
        return code
    return _STUB_RENDERERS.get(language, _render_bash_stub)(control)
