"""Tests for core/store.py."""

from __future__ import annotations

from datetime import date, datetime
from pathlib import Path

import pytest
import yaml

from infrashield.compliance.analyzer import analyze
from infrashield.compliance.loader import load_catalogs
from infrashield.core.store import (
    ControlNotFoundError,
    ControlStore,
    ToolkitNotFoundError,
    load_store,
)
from infrashield.models.toolkit import Client, Purchase, PurchaseType, Toolkit


def _anssi(*ids: str):
    controls = {c.id: c for c in load_catalogs()["anssi-bp-028"].controls}
    return [controls[i] for i in ids]


class TestLoadStore:
    def test_missing_file_gives_empty_sections(self, tmp_path: Path):
        data = load_store(tmp_path / "none.yaml")
        assert data == {"toolkits": [], "controls": [], "clients": [], "purchases": []}

    def test_partial_file_normalized(self, tmp_path: Path):
        path = tmp_path / "store.yaml"
        path.write_text("toolkits:\ncontrols: []\n", encoding="utf-8")
        data = load_store(path)
        assert data["toolkits"] == []
        assert data["purchases"] == []


class TestToolkits:
    def test_seeded_defaults(self, store: ControlStore):
        toolkits = store.list_toolkits()
        assert [t.filename for t in toolkits] == [
            "win_audit.ps1", "linux_audit.sh", "esxi_check.py", "docker_scan.sh",
        ]
        assert [t.platform for t in toolkits] == ["Windows", "Linux", "VMware", "Docker"]

    def test_seed_only_once(self, store: ControlStore):
        assert store.seed_default_toolkits() == 0
        assert len(store.list_toolkits()) == 4

    def test_get_unknown_raises(self, store: ControlStore):
        with pytest.raises(ToolkitNotFoundError):
            store.get_toolkit(99)

    def test_add_toolkit_replaces_same_id(self, store: ControlStore):
        store.add_toolkit(Toolkit(id=2, name="Linux v2", platform="Linux", filename="linux.sh"))
        assert store.get_toolkit(2).name == "Linux v2"
        assert len(store.list_toolkits()) == 4


class TestApplyControls:
    def test_adds_with_code_and_timestamp(self, store: ControlStore):
        now = datetime(2026, 3, 1, 10, 30)
        result = store.apply_controls(2, _anssi("ANSSI-PART-002", "ANSSI-USER-001"), now=now)

        assert [c.control_id for c in result.added] == ["ANSSI-PART-002", "ANSSI-USER-001"]
        assert result.skipped_duplicates == []
        first, second = store.list_controls(2)
        assert first.enabled is True
        assert first.added_at == now
        assert 'results["ANSSI-PART-002"]' in first.code
        assert "MANUAL" in second.code
        assert first.id != second.id

    def test_code_follows_script_file(self, store: ControlStore):
        # VMware toolkit 3 ships a Python script
        row = store.apply_controls(3, _anssi("ANSSI-PART-002")).added[0]
        assert "def check_anssi_part_002():" in row.code
        assert "function " not in row.code

    def test_skips_already_attached(self, store: ControlStore):
        store.apply_controls(2, _anssi("ANSSI-PART-002"))
        result = store.apply_controls(2, _anssi("ANSSI-PART-002", "ANSSI-SSH-002"))
        assert [c.control_id for c in result.added] == ["ANSSI-SSH-002"]
        assert result.skipped_duplicates == ["ANSSI-PART-002"]

    def test_unknown_toolkit(self, store: ControlStore):
        with pytest.raises(ToolkitNotFoundError):
            store.apply_controls(42, _anssi("ANSSI-PART-002"))

    def test_persisted_to_yaml(self, store: ControlStore):
        store.apply_controls(2, _anssi("ANSSI-PART-002"))
        data = yaml.safe_load(store.path.read_text(encoding="utf-8"))
        assert data["controls"][0]["control_id"] == "ANSSI-PART-002"
        assert data["controls"][0]["severity"] == "high"

    def test_list_ordered_by_added_at(self, store: ControlStore):
        store.apply_controls(2, _anssi("ANSSI-SSH-002"), now=datetime(2026, 3, 2))
        store.apply_controls(2, _anssi("ANSSI-PART-002"), now=datetime(2026, 3, 1))
        assert [c.control_id for c in store.list_controls(2)] == ["ANSSI-PART-002", "ANSSI-SSH-002"]

    def test_applied_controls_leave_analysis(self, store: ControlStore):
        store.apply_controls(2, _anssi("ANSSI-PART-002", "ANSSI-SSH-002"))
        analysis = analyze("Linux", store.get_current_control_ids(2))
        ids = {s.id for s in analysis.suggestions}
        assert "ANSSI-PART-002" not in ids
        assert analysis.present_controls == 2


class TestToggleDelete:
    def test_disabled_control_still_counts_as_present(self, store: ControlStore):
        row = store.apply_controls(2, _anssi("ANSSI-PART-002")).added[0]
        toggled = store.toggle_control(row.id)
        assert toggled.enabled is False
        assert store.get_enabled_controls(2) == []
        assert store.get_current_control_ids(2) == {"ANSSI-PART-002"}

    def test_toggle_twice_reenables(self, store: ControlStore):
        row = store.apply_controls(2, _anssi("ANSSI-PART-002")).added[0]
        store.toggle_control(row.id)
        assert store.toggle_control(row.id).enabled is True

    def test_delete(self, store: ControlStore):
        row = store.apply_controls(2, _anssi("ANSSI-PART-002")).added[0]
        store.delete_control(row.id)
        assert store.list_controls(2) == []
        assert store.get_current_control_ids(2) == set()

    def test_missing_row(self, store: ControlStore):
        with pytest.raises(ControlNotFoundError):
            store.toggle_control(404)
        with pytest.raises(ControlNotFoundError):
            store.delete_control(404)


class TestPurchases:
    def test_client_round_trip(self, store: ControlStore):
        store.add_client(Client(id="acme", email="ops@acme.example"))
        assert store.get_client("acme").email == "ops@acme.example"
        assert store.get_client("nobody") is None

    def test_direct_purchase_always_active(self, store: ControlStore):
        store.add_purchase(Purchase(client_id="acme", toolkit_id=2, purchased_at=date(2020, 1, 1)))
        assert store.get_active_purchase("acme", 2, date(2030, 1, 1)) is not None

    def test_subscription_until_expiry(self, store: ControlStore):
        store.add_purchase(Purchase(
            client_id="acme",
            toolkit_id=2,
            purchase_type=PurchaseType.SUBSCRIPTION,
            purchased_at=date(2026, 1, 1),
            expires_at=date(2026, 6, 30),
        ))
        assert store.get_active_purchase("acme", 2, date(2026, 6, 30)) is not None
        assert store.get_active_purchase("acme", 2, date(2026, 7, 1)) is None

    def test_purchase_scoped_to_client_and_toolkit(self, store: ControlStore):
        store.add_purchase(Purchase(client_id="acme", toolkit_id=2, purchased_at=date(2026, 1, 1)))
        assert store.get_active_purchase("globex", 2, date(2026, 2, 1)) is None
        assert store.get_active_purchase("acme", 1, date(2026, 2, 1)) is None

    def test_latest_expiry_preferred(self, store: ControlStore):
        for expires in (date(2026, 3, 1), date(2026, 9, 1)):
            store.add_purchase(Purchase(
                client_id="acme",
                toolkit_id=2,
                purchase_type=PurchaseType.SUBSCRIPTION,
                purchased_at=date(2026, 1, 1),
                expires_at=expires,
            ))
        active = store.get_active_purchase("acme", 2, date(2026, 2, 1))
        assert active.expires_at == date(2026, 9, 1)
