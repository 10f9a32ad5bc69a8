"""Assemble licensed download artifacts.

Joins a toolkit's base script with its enabled controls, derives license
claims from stored purchase records and stamps the result. Bundles are
delivered as a zip of individually stamped scripts.
"""

from __future__ import annotations

import io
import re
import zipfile
from datetime import date, timedelta
from typing import Iterable

from pydantic import BaseModel

from ..compliance.templates import generate_control_code, script_language_for_toolkit
from ..models.control import EnabledControl, SecurityControl
from ..models.license import IssuedLicense, LicenseClaims, ScriptKind
from ..models.toolkit import Client, Purchase, PurchaseType, Toolkit, ToolkitStatus
from .config import LicenseSettings
from .licensing import LicenseStamper
from .store import ControlStore, ToolkitNotFoundError

ADDITIONAL_CONTROLS_TITLE = "ADDITIONAL CONTROLS (Dynamically Added)"


class LicenseError(Exception):
    """No valid license backs the requested download."""


class ToolkitUnavailableError(Exception):
    """Toolkit cannot be delivered right now (maintenance or missing content)."""


class ScriptDownload(BaseModel):
    filename: str
    content: bytes
    media_type: str
    headers: dict[str, str]
    licenses: list[IssuedLicense] = []


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug or "toolkit"


def append_enabled_controls(content: str, controls: Iterable[EnabledControl]) -> str:
    """Append the enabled controls' code below the base script."""
    blocks = [c.code.rstrip("\n") for c in controls if c.enabled and c.code.strip()]
    if not blocks:
        return content

    rule = "# " + "=" * 62
    parts = [content.rstrip("\n"), "", rule, f"# {ADDITIONAL_CONTROLS_TITLE}", rule, ""]
    for block in blocks:
        parts.append(block)
        parts.append("")
    return "\n".join(parts)


def controls_for_script(controls: Iterable[EnabledControl], script: Toolkit) -> list[EnabledControl]:
    """Re-render controls attached at bundle level in the script's language."""
    language = script_language_for_toolkit(script.filename, script.platform)
    rendered = []
    for row in controls:
        control = SecurityControl(
            id=row.control_id,
            name=row.name,
            description=row.description,
            category=row.category,
            severity=row.severity,
            reference=row.reference,
        )
        rendered.append(row.model_copy(update={"code": generate_control_code(control, language)}))
    return rendered


def license_expiry(purchase: Purchase, settings: LicenseSettings) -> date:
    """Authoritative expiry date of a purchase.

    Raises:
        LicenseError: for a subscription without an expiry date.
    """
    if purchase.expires_at is not None:
        return purchase.expires_at
    if purchase.purchase_type == PurchaseType.SUBSCRIPTION:
        raise LicenseError("Subscription has no expiry date")
    return purchase.purchased_at + timedelta(days=settings.direct_validity_days)


def build_claims(
    client: Client,
    toolkit: Toolkit,
    purchase: Purchase,
    settings: LicenseSettings,
    today: date,
    bundle: Toolkit | None = None,
) -> LicenseClaims:
    """Claims for one script, taken only from stored records.

    For a script delivered inside a bundle, pass the bundle: the purchase
    then has to be a purchase of the bundle itself.
    """
    if purchase.client_id != client.id:
        raise LicenseError(f"Purchase does not belong to client {client.id}")
    owner = bundle or toolkit
    if purchase.toolkit_id != owner.id:
        raise LicenseError(f"Purchase does not cover toolkit {owner.id}")
    if bundle is not None and toolkit.id not in bundle.bundled_script_ids:
        raise LicenseError(f"Script {toolkit.id} is not part of bundle {bundle.id}")

    return LicenseClaims(
        client_id=client.id,
        client_email=client.email,
        script_id=toolkit.id,
        script_name=toolkit.filename,
        expires_at=license_expiry(purchase, settings),
        generated_at=today,
    )


def _assemble(toolkit: Toolkit, controls: list[EnabledControl]) -> str:
    return append_enabled_controls(toolkit.content, controls)


def _stamp_script(
    stamper: LicenseStamper,
    toolkit: Toolkit,
    content: str,
    claims: LicenseClaims,
) -> tuple[bytes, IssuedLicense | None]:
    kind = ScriptKind.from_filename(toolkit.filename)
    stamped = stamper.stamp(content.encode("utf-8"), claims, kind)
    if kind == ScriptKind.UNSUPPORTED:
        return stamped, None
    issued = IssuedLicense(license_id=stamper.license_id(claims, stamper.sign(claims)), claims=claims)
    return stamped, issued


def prepare_download(
    store: ControlStore,
    stamper: LicenseStamper,
    toolkit_id: int,
    client_id: str,
    settings: LicenseSettings,
    today: date,
) -> ScriptDownload:
    """Build the licensed artifact a client receives for a toolkit.

    Raises:
        ToolkitNotFoundError: unknown toolkit.
        ToolkitUnavailableError: toolkit under maintenance, or a bundled
            script is missing or empty.
        LicenseError: unknown client or no active purchase.
    """
    toolkit = store.get_toolkit(toolkit_id)
    if toolkit.status == ToolkitStatus.MAINTENANCE:
        raise ToolkitUnavailableError(f"Toolkit {toolkit.name} is under maintenance")

    client = store.get_client(client_id)
    if client is None:
        raise LicenseError(f"Unknown client: {client_id}")

    purchase = store.get_active_purchase(client_id, toolkit_id, today)
    if purchase is None:
        raise LicenseError(f"No active license for toolkit {toolkit_id}")

    if toolkit.is_bundle:
        return _prepare_bundle(store, stamper, toolkit, client, purchase, settings, today)

    claims = build_claims(client, toolkit, purchase, settings, today)
    content = _assemble(toolkit, store.get_enabled_controls(toolkit.id))
    stamped, issued = _stamp_script(stamper, toolkit, content, claims)

    return ScriptDownload(
        filename=toolkit.filename,
        content=stamped,
        media_type="text/plain; charset=utf-8",
        headers={
            "Content-Disposition": f'attachment; filename="{toolkit.filename}"',
            "Content-Type": "text/plain; charset=utf-8",
        },
        licenses=[issued] if issued else [],
    )


def _prepare_bundle(
    store: ControlStore,
    stamper: LicenseStamper,
    bundle: Toolkit,
    client: Client,
    purchase: Purchase,
    settings: LicenseSettings,
    today: date,
) -> ScriptDownload:
    bundle_controls = store.get_enabled_controls(bundle.id)
    licenses: list[IssuedLicense] = []
    buffer = io.BytesIO()

    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
        for script_id in bundle.bundled_script_ids:
            try:
                script = store.get_toolkit(script_id)
            except ToolkitNotFoundError as e:
                raise ToolkitUnavailableError(f"Bundled script {script_id} is missing") from e
            if not script.content.strip():
                raise ToolkitUnavailableError(f"Bundled script {script.filename} is empty")

            controls = controls_for_script(bundle_controls, script) + store.get_enabled_controls(script.id)
            claims = build_claims(client, script, purchase, settings, today, bundle=bundle)
            stamped, issued = _stamp_script(stamper, script, _assemble(script, controls), claims)
            if issued:
                licenses.append(issued)

            info = zipfile.ZipInfo(script.filename, date_time=(today.year, today.month, today.day, 0, 0, 0))
            info.compress_type = zipfile.ZIP_DEFLATED
            archive.writestr(info, stamped)

    filename = f"{slugify(bundle.name)}.zip"
    return ScriptDownload(
        filename=filename,
        content=buffer.getvalue(),
        media_type="application/zip",
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "Content-Type": "application/zip",
        },
        licenses=licenses,
    )
