"""Tests for compliance/loader.py."""

from __future__ import annotations

from pathlib import Path

import pytest

from infrashield.compliance.loader import (
    CatalogError,
    get_available_standards,
    get_standard_by_id,
    load_catalog,
    load_catalogs,
    project_standards_dir,
)
from infrashield.models.control import Severity

CUSTOM_CATALOG = """\
id: custom-linux
name: Custom Linux baseline
version: "0.1"
last_updated: "2025-02-01"
controls:
  - {id: CUST-001, name: Auditd running, category: Logging, severity: high, reference: C1}
  - {id: CUST-002, name: Banner set, category: Access, severity: low, reference: C2}
"""


class TestBundledCatalogs:
    def test_all_standards_present(self):
        catalogs = load_catalogs()
        assert set(catalogs) == {
            "owasp-web", "anssi-bp-028", "cis-windows",
            "cis-docker", "cis-vmware", "netapp-hardening",
        }

    def test_anssi_catalog_contents(self):
        catalog = load_catalogs()["anssi-bp-028"]
        assert catalog.name == "ANSSI-BP-028 Linux"
        assert len(catalog.controls) == 29
        assert catalog.controls[0].id == "ANSSI-PART-001"

    def test_control_ids_unique_per_catalog(self):
        for catalog in load_catalogs().values():
            ids = [c.id for c in catalog.controls]
            assert len(ids) == len(set(ids)), catalog.id

    def test_recommended_follows_severity(self):
        for catalog in load_catalogs().values():
            for control in catalog.controls:
                expected = control.severity in (Severity.CRITICAL, Severity.HIGH)
                assert control.recommended is expected, control.id

    def test_repeated_loads_share_controls(self):
        first = load_catalogs()["cis-docker"]
        second = load_catalogs()["cis-docker"]
        assert first is second


class TestLoadCatalog:
    def test_loads_file(self, tmp_path: Path):
        path = tmp_path / "custom.yaml"
        path.write_text(CUSTOM_CATALOG, encoding="utf-8")
        catalog = load_catalog(path)
        assert catalog.id == "custom-linux"
        assert [c.id for c in catalog.controls] == ["CUST-001", "CUST-002"]
        assert catalog.controls[0].recommended is True
        assert catalog.controls[1].recommended is False

    def test_recommended_in_file_is_ignored(self, tmp_path: Path):
        path = tmp_path / "custom.yaml"
        path.write_text(
            'id: x\nname: X\nversion: "1"\nlast_updated: "2025-01-01"\ncontrols:\n'
            "  - {id: X-1, name: n, severity: low, recommended: true}\n",
            encoding="utf-8",
        )
        assert load_catalog(path).controls[0].recommended is False

    def test_duplicate_control_id_rejected(self, tmp_path: Path):
        path = tmp_path / "dup.yaml"
        path.write_text(
            'id: dup\nname: Dup\nversion: "1"\nlast_updated: "2025-01-01"\ncontrols:\n'
            "  - {id: D-1, name: a, severity: low}\n"
            "  - {id: D-1, name: b, severity: high}\n",
            encoding="utf-8",
        )
        with pytest.raises(CatalogError, match="duplicate control id D-1"):
            load_catalog(path)

    def test_invalid_yaml_rejected(self, tmp_path: Path):
        path = tmp_path / "bad.yaml"
        path.write_text("id: [unclosed\n", encoding="utf-8")
        with pytest.raises(CatalogError, match="invalid YAML"):
            load_catalog(path)

    def test_missing_id_rejected(self, tmp_path: Path):
        path = tmp_path / "noid.yaml"
        path.write_text("name: Nothing\n", encoding="utf-8")
        with pytest.raises(CatalogError, match="missing standard id"):
            load_catalog(path)

    def test_unknown_severity_rejected(self, tmp_path: Path):
        path = tmp_path / "sev.yaml"
        path.write_text(
            'id: s\nname: S\nversion: "1"\nlast_updated: "2025-01-01"\ncontrols:\n'
            "  - {id: S-1, name: a, severity: urgent}\n",
            encoding="utf-8",
        )
        with pytest.raises(CatalogError):
            load_catalog(path)


class TestProjectCatalogs:
    def test_project_catalog_added(self, initialized_project: Path):
        standards_dir = project_standards_dir(initialized_project)
        (standards_dir / "custom.yaml").write_text(CUSTOM_CATALOG, encoding="utf-8")

        catalogs = load_catalogs(standards_dir)
        assert "custom-linux" in catalogs
        assert "anssi-bp-028" in catalogs

    def test_broken_project_file_skipped(self, initialized_project: Path):
        standards_dir = project_standards_dir(initialized_project)
        (standards_dir / "broken.yaml").write_text("id: [oops\n", encoding="utf-8")
        catalogs = load_catalogs(standards_dir)
        assert len(catalogs) == 6

    def test_available_standards_rows(self, initialized_project: Path):
        standards_dir = project_standards_dir(initialized_project)
        (standards_dir / "custom.yaml").write_text(CUSTOM_CATALOG, encoding="utf-8")

        rows = {r["id"]: r for r in get_available_standards(standards_dir)}
        assert rows["anssi-bp-028"]["path"] == "bundled:anssi-bp-028"
        assert rows["anssi-bp-028"]["control_count"] == 29
        assert rows["custom-linux"]["path"].endswith("custom.yaml")
        assert rows["custom-linux"]["last_updated"] == "2025-02-01"


class TestGetStandardById:
    def test_found(self):
        assert get_standard_by_id("owasp-web").name

    def test_unknown_returns_none(self):
        assert get_standard_by_id("iso-27001") is None
