"""Administrative workflows behind the ``ist`` commands.

Each run_* function loads the project, performs one operation and returns a
process exit code: 0 on success, 1 on an operational failure, 11 on a usage
or configuration error.
"""

from __future__ import annotations

import asyncio
from datetime import date
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .. import __version__
from ..compliance.analyzer import analyze, select_suggestions
from ..compliance.loader import CatalogError, get_available_standards, load_catalogs, project_standards_dir
from ..formatters.junit import export_junit_analysis
from ..formatters.report import format_analysis_json, format_analysis_markdown
from ..models.control import GapAnalysis, StandardCatalog
from ..models.toolkit import Client, Purchase, PurchaseType
from ..notify.mailer import ResendMailer, SendResult, build_license_email
from ..utils.sanitize import sanitize_error
from .config import (
    ConfigError,
    config_dir,
    get_effective_config,
    get_license_secret,
    get_license_settings,
    get_platform_overrides,
)
from .downloads import LicenseError, ScriptDownload, ToolkitUnavailableError, prepare_download
from .licensing import LicenseStamper
from .store import ControlNotFoundError, ControlStore, ToolkitNotFoundError

console = Console()

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 11


def initialize_project(project_path: Path) -> None:
    """Initialize .infrashield directory structure in a project."""
    ist_dir = config_dir(project_path)
    for subdir in ("standards", "reports", "downloads"):
        (ist_dir / subdir).mkdir(parents=True, exist_ok=True)

    config_path = ist_dir / "config.yaml"
    if not config_path.exists():
        config_path.write_text(
            "# Infra Shield Tools project configuration\n"
            "\n"
            f"ist_version: \"{__version__}\"\n"
            "\n"
            "project:\n"
            f'  name: "{project_path.name}"\n'
            "\n"
            "license:\n"
            "  secret_env: IST_LICENSE_SECRET\n"
            "\n"
            "# Extra platform -> standard ids entries\n"
            "platforms: {}\n",
            encoding="utf-8",
        )

    store = ControlStore.for_project(project_path)
    seeded = store.seed_default_toolkits()

    console.print(f"  [green]Initialized[/green] .infrashield/ in {project_path.name}")
    if seeded:
        console.print(f"  [green]OK[/green] Seeded {seeded} default toolkits")


def _load_project(project_path: Path) -> tuple[dict, ControlStore]:
    if not config_dir(project_path).exists():
        raise ConfigError("Project not initialized. Run: ist init -p <path>")
    config = get_effective_config(project_path)
    filename = (config.get("store") or {}).get("filename", "store.yaml")
    return config, ControlStore.for_project(project_path, filename)


def _error(message: str) -> None:
    console.print(f"  [red]ERROR[/red] {escape(sanitize_error(message))}")


def _catalogs(project_path: Path) -> dict[str, StandardCatalog]:
    return load_catalogs(project_standards_dir(project_path))


def _run_analysis(
    config: dict,
    store: ControlStore,
    toolkit_id: int,
    catalogs: dict[str, StandardCatalog],
) -> GapAnalysis:
    toolkit = store.get_toolkit(toolkit_id)
    return analyze(
        toolkit.platform,
        store.get_current_control_ids(toolkit_id),
        catalogs=catalogs,
        overrides=get_platform_overrides(config),
    )


def list_standards(project_path: Path) -> int:
    """Print the available reference catalogs."""
    try:
        rows = get_available_standards(project_standards_dir(project_path))
    except CatalogError as e:
        _error(str(e))
        return EXIT_FAILURE

    table = Table(title="Reference standards")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Version")
    table.add_column("Updated")
    table.add_column("Controls", justify="right")
    table.add_column("Source", style="dim")
    for row in rows:
        table.add_row(
            row["id"], row["name"], row["version"], row["last_updated"],
            str(row["control_count"]), row["path"],
        )
    console.print(table)
    return EXIT_OK


def run_check_updates(
    project_path: Path,
    toolkit_id: int,
    output_format: str = "markdown",
    ci: bool = False,
    output_path: Optional[Path] = None,
) -> int:
    """Analyze a toolkit and report the missing reference controls.

    In CI mode the exit code is 1 when recommended controls are missing.
    """
    try:
        config, store = _load_project(project_path)
        catalogs = _catalogs(project_path)
        toolkit = store.get_toolkit(toolkit_id)
        analysis = _run_analysis(config, store, toolkit_id, catalogs)
    except ConfigError as e:
        _error(str(e))
        return EXIT_USAGE
    except ToolkitNotFoundError:
        _error(f"Toolkit not found: {toolkit_id}")
        return EXIT_FAILURE
    except CatalogError as e:
        _error(str(e))
        return EXIT_FAILURE

    if output_format == "json":
        click.echo(format_analysis_json(analysis, toolkit))
    elif output_format == "junit":
        target = output_path or config_dir(project_path) / "reports" / f"junit-toolkit-{toolkit_id}.xml"
        summary = export_junit_analysis(analysis, target, catalogs=catalogs)
        console.print(
            f"  [green]OK[/green] JUnit report: {summary['total_tests']} controls, "
            f"{summary['failures']} failures, {summary['skipped']} skipped"
        )
        console.print(f"  Saved to {target}")
    else:
        click.echo(format_analysis_markdown(analysis, toolkit))

    if not analysis.standards_used and output_format != "json":
        console.print(f"  [yellow]WARN[/yellow] No standards mapped for platform {toolkit.platform}")

    if ci and analysis.recommended:
        return EXIT_FAILURE
    return EXIT_OK


def run_apply_updates(
    project_path: Path,
    toolkit_id: int,
    control_ids: list[str],
    recommended: bool = False,
) -> int:
    """Attach selected suggestions to a toolkit."""
    if not control_ids and not recommended:
        _error("Give control ids or --recommended")
        return EXIT_USAGE

    try:
        config, store = _load_project(project_path)
        analysis = _run_analysis(config, store, toolkit_id, _catalogs(project_path))
        wanted = list(control_ids)
        if recommended:
            wanted = [s.id for s in analysis.recommended] + wanted
        chosen = select_suggestions(analysis, wanted)
    except ConfigError as e:
        _error(str(e))
        return EXIT_USAGE
    except ToolkitNotFoundError:
        _error(f"Toolkit not found: {toolkit_id}")
        return EXIT_FAILURE
    except ValueError as e:
        _error(str(e))
        return EXIT_USAGE

    if not chosen:
        console.print("  [yellow]WARN[/yellow] Nothing to apply")
        return EXIT_OK

    result = store.apply_controls(toolkit_id, [s.to_control() for s in chosen])
    for row in result.added:
        console.print(f"  [green]OK[/green] Added {row.control_id} ({row.severity.value}) as #{row.id}")
    for control_id in result.skipped_duplicates:
        console.print(f"  [yellow]WARN[/yellow] {control_id} already attached")
    console.print(f"  {len(result.added)} control(s) added to toolkit {toolkit_id}")
    return EXIT_OK


def show_controls(project_path: Path, toolkit_id: int) -> int:
    try:
        _, store = _load_project(project_path)
        toolkit = store.get_toolkit(toolkit_id)
        controls = store.list_controls(toolkit_id)
    except ConfigError as e:
        _error(str(e))
        return EXIT_USAGE
    except ToolkitNotFoundError:
        _error(f"Toolkit not found: {toolkit_id}")
        return EXIT_FAILURE

    if not controls:
        console.print(f"  No controls attached to {toolkit.name}")
        return EXIT_OK

    table = Table(title=f"{toolkit.name} ({toolkit.platform})")
    table.add_column("#", justify="right")
    table.add_column("Control", style="cyan")
    table.add_column("Name")
    table.add_column("Severity")
    table.add_column("Enabled")
    table.add_column("Added")
    for c in controls:
        table.add_row(
            str(c.id), c.control_id, c.name, c.severity.value,
            "[green]yes[/green]" if c.enabled else "[dim]no[/dim]",
            c.added_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)
    return EXIT_OK


def run_toggle_control(project_path: Path, row_id: int) -> int:
    try:
        _, store = _load_project(project_path)
        control = store.toggle_control(row_id)
    except ConfigError as e:
        _error(str(e))
        return EXIT_USAGE
    except ControlNotFoundError:
        _error(f"Control not found: #{row_id}")
        return EXIT_FAILURE

    state = "enabled" if control.enabled else "disabled"
    console.print(f"  [green]OK[/green] {control.control_id} (#{row_id}) {state}")
    return EXIT_OK


def run_delete_control(project_path: Path, row_id: int) -> int:
    try:
        _, store = _load_project(project_path)
        store.delete_control(row_id)
    except ConfigError as e:
        _error(str(e))
        return EXIT_USAGE
    except ControlNotFoundError:
        _error(f"Control not found: #{row_id}")
        return EXIT_FAILURE

    console.print(f"  [green]OK[/green] Deleted control #{row_id}")
    return EXIT_OK


def grant_license(
    project_path: Path,
    client_id: str,
    email: str,
    toolkit_id: int,
    subscription: bool = False,
    expires_at: Optional[date] = None,
    purchased_at: Optional[date] = None,
) -> int:
    """Record a client and a purchase of a toolkit."""
    if subscription and expires_at is None:
        _error("A subscription needs --expires")
        return EXIT_USAGE

    try:
        _, store = _load_project(project_path)
        store.get_toolkit(toolkit_id)
    except ConfigError as e:
        _error(str(e))
        return EXIT_USAGE
    except ToolkitNotFoundError:
        _error(f"Toolkit not found: {toolkit_id}")
        return EXIT_FAILURE

    store.add_client(Client(id=client_id, email=email))
    purchase = store.add_purchase(Purchase(
        client_id=client_id,
        toolkit_id=toolkit_id,
        purchase_type=PurchaseType.SUBSCRIPTION if subscription else PurchaseType.DIRECT,
        purchased_at=purchased_at or date.today(),
        expires_at=expires_at,
    ))
    console.print(
        f"  [green]OK[/green] {purchase.purchase_type.value} license for toolkit {toolkit_id} "
        f"granted to {client_id}"
    )
    return EXIT_OK


async def _notify(mailer: ResendMailer, download: ScriptDownload, config: dict) -> list[SendResult]:
    settings = get_license_settings(config)
    messages = [
        build_license_email(issued.claims, issued.license_id, settings)
        for issued in download.licenses
    ]
    return list(await asyncio.gather(*(mailer.send(m) for m in messages)))


def run_download(
    project_path: Path,
    toolkit_id: int,
    client_id: str,
    output_dir: Optional[Path] = None,
    notify: bool = False,
    today: Optional[date] = None,
) -> int:
    """Write the licensed artifact for a client to disk."""
    try:
        config, store = _load_project(project_path)
        stamper = LicenseStamper(get_license_secret(config), get_license_settings(config))
    except ConfigError as e:
        _error(str(e))
        return EXIT_USAGE

    try:
        download = prepare_download(
            store,
            stamper,
            toolkit_id,
            client_id,
            get_license_settings(config),
            today or date.today(),
        )
    except ToolkitNotFoundError:
        _error(f"Toolkit not found: {toolkit_id}")
        return EXIT_FAILURE
    except (LicenseError, ToolkitUnavailableError) as e:
        _error(str(e))
        return EXIT_FAILURE

    target_dir = output_dir or config_dir(project_path) / "downloads"
    target_dir.mkdir(parents=True, exist_ok=True)
    target = target_dir / download.filename
    target.write_bytes(download.content)

    console.print(f"  [green]OK[/green] Wrote {download.filename} ({len(download.content)} bytes)")
    for issued in download.licenses:
        console.print(
            f"  Licence {issued.license_id} for {issued.claims.script_name}, "
            f"expires {issued.claims.expires_at.isoformat()}"
        )
    if not download.licenses:
        console.print(f"  [yellow]WARN[/yellow] {download.filename} is not a stampable script; delivered as-is")

    if notify and download.licenses:
        mailer = ResendMailer(config.get("email") or {})
        for result in asyncio.run(_notify(mailer, download, config)):
            if result.success:
                console.print(f"  [green]OK[/green] License e-mail sent ({result.message_id})")
            else:
                console.print(f"  [yellow]WARN[/yellow] License e-mail not sent: {escape(result.error or '')}")

    return EXIT_OK
