"""Toolkit platform to compliance standard mapping."""

from __future__ import annotations

from typing import Optional

from ..models.control import StandardCatalog

PLATFORM_STANDARDS: dict[str, list[str]] = {
    "Windows": ["cis-windows"],
    "Linux": ["anssi-bp-028"],
    "VMware": ["cis-vmware"],
    "Docker": ["cis-docker"],
    "Containers": ["cis-docker"],
    "NetApp": ["netapp-hardening"],
    "Web": ["owasp-web"],
}


def get_standard_ids_for_platform(
    platform: str,
    overrides: Optional[dict[str, list[str]]] = None,
) -> list[str]:
    """Get the standard ids that apply to a toolkit platform.

    Matching is case-insensitive. Entries in ``overrides`` replace the
    built-in mapping for the same platform. Unknown platforms map to ``[]``.
    """
    mapping = {label.lower(): ids for label, ids in PLATFORM_STANDARDS.items()}
    if overrides:
        mapping.update({label.lower(): ids for label, ids in overrides.items()})

    return list(mapping.get((platform or "").strip().lower()) or [])


def get_catalogs_for_platform(
    platform: str,
    catalogs: dict[str, StandardCatalog],
    overrides: Optional[dict[str, list[str]]] = None,
) -> list[StandardCatalog]:
    """Resolve a platform to its loaded catalogs, dropping unknown ids."""
    return [
        catalogs[standard_id]
        for standard_id in get_standard_ids_for_platform(platform, overrides)
        if standard_id in catalogs
    ]
