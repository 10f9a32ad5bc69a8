"""Shared fixtures for Infra Shield Tools tests."""

from __future__ import annotations

from datetime import date
from pathlib import Path

import pytest

from infrashield.core.config import LicenseSettings
from infrashield.core.licensing import LicenseStamper
from infrashield.core.store import ControlStore
from infrashield.models.license import LicenseClaims

TEST_SECRET = b"test-secret-do-not-use"


@pytest.fixture
def tmp_project(tmp_path: Path) -> Path:
    """Create an empty project directory."""
    project = tmp_path / "test-project"
    project.mkdir()
    return project


@pytest.fixture
def initialized_project(tmp_project: Path) -> Path:
    """Create a project with .infrashield initialized and default toolkits."""
    ist_dir = tmp_project / ".infrashield"
    ist_dir.mkdir()
    (ist_dir / "standards").mkdir()
    (ist_dir / "config.yaml").write_text(
        'project:\n  name: "test-project"\n\nlicense:\n  secret_env: IST_LICENSE_SECRET\n',
        encoding="utf-8",
    )
    ControlStore.for_project(tmp_project).seed_default_toolkits()
    return tmp_project


@pytest.fixture
def store(initialized_project: Path) -> ControlStore:
    return ControlStore.for_project(initialized_project)


@pytest.fixture
def settings() -> LicenseSettings:
    return LicenseSettings()


@pytest.fixture
def stamper(settings: LicenseSettings) -> LicenseStamper:
    return LicenseStamper(TEST_SECRET, settings)


@pytest.fixture
def claims() -> LicenseClaims:
    return LicenseClaims(
        client_id="acme",
        client_email="ops@acme.example",
        script_id=2,
        script_name="linux_audit.sh",
        expires_at=date(2026, 12, 31),
        generated_at=date(2026, 1, 15),
    )
