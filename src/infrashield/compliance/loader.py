"""Reference catalog loading.

Catalogs ship as YAML package data under ``infrashield/data/standards``.
A project can add or replace catalogs in ``.infrashield/standards/``.
"""

from __future__ import annotations

from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from ..models.control import StandardCatalog


class CatalogError(ValueError):
    """A catalog file is malformed or violates catalog rules."""


def _parse_catalog(text: str, source: str) -> StandardCatalog:
    try:
        content = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise CatalogError(f"{source}: invalid YAML ({e})") from e

    if not isinstance(content, dict) or not content.get("id"):
        raise CatalogError(f"{source}: missing standard id")

    try:
        catalog = StandardCatalog.model_validate(content)
    except ValidationError as e:
        raise CatalogError(f"{source}: {e}") from e

    seen: set[str] = set()
    for control in catalog.controls:
        if control.id in seen:
            raise CatalogError(f"{source}: duplicate control id {control.id}")
        seen.add(control.id)

    return catalog


def load_catalog(path: Path) -> StandardCatalog:
    """Load and validate a single catalog file."""
    return _parse_catalog(path.read_text(encoding="utf-8-sig"), str(path))


@lru_cache(maxsize=1)
def _bundled_catalogs() -> dict[str, StandardCatalog]:
    catalogs: dict[str, StandardCatalog] = {}
    data_pkg = resources.files("infrashield.data.standards")
    for entry in sorted(data_pkg.iterdir(), key=lambda e: e.name):
        if not entry.name.endswith(".yaml"):
            continue
        catalog = _parse_catalog(entry.read_text(encoding="utf-8"), entry.name)
        catalogs[catalog.id] = catalog
    return catalogs


def _scan_dir(standards_dir: Path) -> list[tuple[Path, StandardCatalog]]:
    """Load every valid catalog in a directory, skipping broken files."""
    found: list[tuple[Path, StandardCatalog]] = []
    if not standards_dir.exists():
        return found

    for yaml_file in sorted(standards_dir.rglob("*.yaml")):
        try:
            found.append((yaml_file, load_catalog(yaml_file)))
        except (CatalogError, OSError):
            continue
    return found


def load_catalogs(standards_dir: Optional[Path] = None) -> dict[str, StandardCatalog]:
    """Get all catalogs keyed by standard id.

    Bundled catalogs are parsed once per process. Catalogs found in
    ``standards_dir`` are merged over them by id.
    """
    catalogs = dict(_bundled_catalogs())
    if standards_dir:
        for _, catalog in _scan_dir(standards_dir):
            catalogs[catalog.id] = catalog
    return catalogs


def get_available_standards(standards_dir: Optional[Path] = None) -> list[dict]:
    """Get summary rows for all available standards."""
    sources: dict[str, str] = {
        cid: f"bundled:{cid}" for cid in _bundled_catalogs()
    }
    if standards_dir:
        for path, catalog in _scan_dir(standards_dir):
            sources[catalog.id] = str(path)

    catalogs = load_catalogs(standards_dir)
    return [
        {
            "id": catalog.id,
            "name": catalog.name,
            "version": catalog.version,
            "last_updated": catalog.last_updated.isoformat(),
            "control_count": len(catalog.controls),
            "path": sources[catalog.id],
        }
        for catalog in catalogs.values()
    ]


def get_standard_by_id(
    standard_id: str,
    catalogs: Optional[dict[str, StandardCatalog]] = None,
) -> Optional[StandardCatalog]:
    """Look up one catalog by standard id."""
    if catalogs is None:
        catalogs = load_catalogs()
    return catalogs.get(standard_id)


def project_standards_dir(project_path: Path) -> Path:
    return project_path / ".infrashield" / "standards"
