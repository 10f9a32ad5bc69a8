"""Infra Shield Tools (ist) - toolkit maintenance and licensed downloads."""

from __future__ import annotations

import sys
from datetime import datetime
from pathlib import Path

import click

from .. import __version__

project_option = click.option(
    "--project", "-p", type=click.Path(exists=True, file_okay=False), default=".",
    show_default=True, help="Project path",
)


def _finish(code: int) -> None:
    if code:
        sys.exit(code)


@click.group()
@click.version_option(__version__, prog_name="ist")
def ist_cli() -> None:
    """Infra Shield Tools - compliance gap analysis and script licensing."""


@ist_cli.command()
@project_option
def init(project: str) -> None:
    """Initialize Infra Shield Tools in a project."""
    from ..core.orchestrator import initialize_project

    initialize_project(Path(project))


@ist_cli.command()
@project_option
def standards(project: str) -> None:
    """List the available reference standards."""
    from ..core.orchestrator import list_standards

    _finish(list_standards(Path(project)))


@ist_cli.command("check-updates")
@project_option
@click.argument("toolkit_id", type=int)
@click.option("--output-format", "-f", type=click.Choice(["markdown", "json", "junit"]), default="markdown")
@click.option("--output", "-o", type=click.Path(dir_okay=False), help="JUnit output file")
@click.option("--ci", is_flag=True, help="CI mode: exit 1 when recommended controls are missing")
def check_updates(project: str, toolkit_id: int, output_format: str, output: str | None, ci: bool) -> None:
    """Compare a toolkit with the standards for its platform.

    Example: ist check-updates 2 -p ./shop -f json
    """
    from ..core.orchestrator import run_check_updates

    _finish(run_check_updates(
        Path(project),
        toolkit_id,
        output_format=output_format,
        ci=ci,
        output_path=Path(output) if output else None,
    ))


@ist_cli.command("apply-updates")
@project_option
@click.argument("toolkit_id", type=int)
@click.argument("control_ids", nargs=-1)
@click.option("--recommended", is_flag=True, help="Apply every recommended suggestion")
def apply_updates(project: str, toolkit_id: int, control_ids: tuple[str, ...], recommended: bool) -> None:
    """Attach suggested controls to a toolkit.

    Example: ist apply-updates 2 ANSSI-SSH-002 ANSSI-PART-002 -p ./shop
    """
    from ..core.orchestrator import run_apply_updates

    _finish(run_apply_updates(Path(project), toolkit_id, list(control_ids), recommended=recommended))


@ist_cli.command()
@project_option
@click.argument("toolkit_id", type=int)
def controls(project: str, toolkit_id: int) -> None:
    """List the controls attached to a toolkit."""
    from ..core.orchestrator import show_controls

    _finish(show_controls(Path(project), toolkit_id))


@ist_cli.command("toggle-control")
@project_option
@click.argument("row_id", type=int)
def toggle_control(project: str, row_id: int) -> None:
    """Enable or disable an attached control."""
    from ..core.orchestrator import run_toggle_control

    _finish(run_toggle_control(Path(project), row_id))


@ist_cli.command("delete-control")
@project_option
@click.argument("row_id", type=int)
def delete_control(project: str, row_id: int) -> None:
    """Remove an attached control."""
    from ..core.orchestrator import run_delete_control

    _finish(run_delete_control(Path(project), row_id))


@ist_cli.command()
@project_option
@click.argument("client_id")
@click.argument("email")
@click.argument("toolkit_id", type=int)
@click.option("--subscription", is_flag=True, help="Time-limited subscription instead of a direct purchase")
@click.option("--expires", type=click.DateTime(formats=["%Y-%m-%d"]), help="Expiry date (YYYY-MM-DD)")
@click.option("--purchased", type=click.DateTime(formats=["%Y-%m-%d"]), help="Purchase date (default: today)")
def grant(
    project: str,
    client_id: str,
    email: str,
    toolkit_id: int,
    subscription: bool,
    expires: datetime | None,
    purchased: datetime | None,
) -> None:
    """Record a client's purchase of a toolkit.

    Example: ist grant acme ops@acme.example 2 --subscription --expires 2027-01-31
    """
    from ..core.orchestrator import grant_license

    _finish(grant_license(
        Path(project),
        client_id,
        email,
        toolkit_id,
        subscription=subscription,
        expires_at=expires.date() if expires else None,
        purchased_at=purchased.date() if purchased else None,
    ))


@ist_cli.command()
@project_option
@click.argument("toolkit_id", type=int)
@click.option("--client", "client_id", required=True, help="Client id")
@click.option("--output-dir", "-o", type=click.Path(file_okay=False), help="Where to write the script")
@click.option("--notify", is_flag=True, help="E-mail the license details to the client")
def download(project: str, toolkit_id: int, client_id: str, output_dir: str | None, notify: bool) -> None:
    """Write a licensed copy of a toolkit for a client.

    Example: ist download 2 --client acme -o ./out
    """
    from ..core.orchestrator import run_download

    _finish(run_download(
        Path(project),
        toolkit_id,
        client_id,
        output_dir=Path(output_dir) if output_dir else None,
        notify=notify,
    ))


def main() -> None:
    ist_cli()


if __name__ == "__main__":
    main()
