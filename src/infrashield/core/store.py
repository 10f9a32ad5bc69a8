"""File-backed control, purchase and script store.

Keeps toolkits, their attached controls, clients and purchases in
.infrashield/store.yaml. Every operation reloads the file and writes it
back, so separate CLI invocations always see each other's changes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Iterable, Optional

import yaml

from ..compliance.templates import generate_control_code, script_language_for_toolkit
from ..models.control import EnabledControl, SecurityControl
from ..models.toolkit import Client, Purchase, Toolkit
from .config import config_dir

STORE_SECTIONS = ("toolkits", "controls", "clients", "purchases")

DEFAULT_TOOLKITS: list[dict] = [
    {
        "id": 1,
        "name": "Windows Security Audit",
        "platform": "Windows",
        "filename": "win_audit.ps1",
        "description": "Audit complet basé sur les guides ANSSI et benchmarks CIS pour environnements Windows.",
        "content": '# Windows Security Audit\nWrite-Host "Audit basé sur ANSSI/CIS..."\n',
    },
    {
        "id": 2,
        "name": "Linux Hardening Check",
        "platform": "Linux",
        "filename": "linux_audit.sh",
        "description": "Vérification de la conformité ANSSI (BP-028) et CIS pour serveurs Linux.",
        "content": '#!/bin/bash\necho "Audit basé sur ANSSI/CIS..."\n',
    },
    {
        "id": 3,
        "name": "ESXi Host Validator",
        "platform": "VMware",
        "filename": "esxi_check.py",
        "description": "Contrôle de sécurité pour hôtes ESXi selon les recommandations CIS.",
        "content": '#!/usr/bin/env python3\nprint("Audit basé sur CIS...")\n',
    },
    {
        "id": 4,
        "name": "Container Security Scanner",
        "platform": "Docker",
        "filename": "docker_scan.sh",
        "description": "Scan de configuration Docker selon le benchmark CIS.",
        "content": '#!/bin/bash\necho "Audit basé sur CIS..."\n',
    },
]


class ToolkitNotFoundError(KeyError):
    pass


class ControlNotFoundError(KeyError):
    pass


@dataclass
class ApplyResult:
    added: list[EnabledControl]
    skipped_duplicates: list[str]


def store_path(project_path: Path, filename: str = "store.yaml") -> Path:
    return config_dir(project_path) / filename


def load_store(path: Path) -> dict:
    """Load store data, filling in any missing sections."""
    if not path.exists():
        return {section: [] for section in STORE_SECTIONS}
    content = path.read_text(encoding="utf-8-sig")
    data = yaml.safe_load(content) or {}
    for section in STORE_SECTIONS:
        if not data.get(section):
            data[section] = []
    return data


def save_store(path: Path, data: dict) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    content = yaml.dump(
        data,
        default_flow_style=False,
        sort_keys=False,
        allow_unicode=True,
        width=120,
    )
    path.write_text(content, encoding="utf-8")
    return path


class ControlStore:
    """Toolkits, attached controls and purchases for one project."""

    def __init__(self, path: Path):
        self.path = path

    @classmethod
    def for_project(cls, project_path: Path, filename: str = "store.yaml") -> ControlStore:
        return cls(store_path(project_path, filename))

    def _load(self) -> dict:
        return load_store(self.path)

    def _save(self, data: dict) -> None:
        save_store(self.path, data)

    # -- toolkits ----------------------------------------------------------

    def list_toolkits(self) -> list[Toolkit]:
        return [Toolkit.model_validate(t) for t in self._load()["toolkits"]]

    def get_toolkit(self, toolkit_id: int) -> Toolkit:
        for raw in self._load()["toolkits"]:
            if raw.get("id") == toolkit_id:
                return Toolkit.model_validate(raw)
        raise ToolkitNotFoundError(toolkit_id)

    def add_toolkit(self, toolkit: Toolkit) -> Toolkit:
        data = self._load()
        data["toolkits"] = [t for t in data["toolkits"] if t.get("id") != toolkit.id]
        data["toolkits"].append(toolkit.model_dump(mode="json"))
        self._save(data)
        return toolkit

    def seed_default_toolkits(self) -> int:
        """Insert the default catalogue when no toolkit exists yet."""
        data = self._load()
        if data["toolkits"]:
            return 0
        data["toolkits"] = [Toolkit.model_validate(t).model_dump(mode="json") for t in DEFAULT_TOOLKITS]
        self._save(data)
        return len(DEFAULT_TOOLKITS)

    # -- controls ----------------------------------------------------------

    def list_controls(self, toolkit_id: int) -> list[EnabledControl]:
        controls = [
            EnabledControl.model_validate(c)
            for c in self._load()["controls"]
            if c.get("toolkit_id") == toolkit_id
        ]
        return sorted(controls, key=lambda c: (c.added_at, c.id))

    def get_enabled_controls(self, toolkit_id: int) -> list[EnabledControl]:
        return [c for c in self.list_controls(toolkit_id) if c.enabled]

    def get_current_control_ids(self, toolkit_id: int) -> set[str]:
        """Ids of every control attached to a toolkit, enabled or not."""
        self.get_toolkit(toolkit_id)
        return {c.control_id for c in self.list_controls(toolkit_id)}

    def apply_controls(
        self,
        toolkit_id: int,
        controls: Iterable[SecurityControl],
        now: Optional[datetime] = None,
    ) -> ApplyResult:
        """Attach accepted controls, skipping ids the toolkit already has."""
        toolkit = self.get_toolkit(toolkit_id)
        data = self._load()
        language = script_language_for_toolkit(toolkit.filename, toolkit.platform)
        added_at = now or datetime.now()

        attached = {
            c.get("control_id") for c in data["controls"] if c.get("toolkit_id") == toolkit_id
        }
        next_id = max((c.get("id", 0) for c in data["controls"]), default=0) + 1

        result = ApplyResult(added=[], skipped_duplicates=[])
        for control in controls:
            if control.id in attached:
                result.skipped_duplicates.append(control.id)
                continue

            row = EnabledControl(
                id=next_id,
                toolkit_id=toolkit_id,
                control_id=control.id,
                name=control.name,
                description=control.description,
                category=control.category,
                severity=control.severity,
                reference=control.reference,
                code=generate_control_code(control, language),
                enabled=True,
                added_at=added_at,
            )
            data["controls"].append(row.model_dump(mode="json"))
            attached.add(control.id)
            result.added.append(row)
            next_id += 1

        if result.added:
            self._save(data)
        return result

    def toggle_control(self, row_id: int) -> EnabledControl:
        data = self._load()
        for raw in data["controls"]:
            if raw.get("id") == row_id:
                raw["enabled"] = not raw.get("enabled", True)
                self._save(data)
                return EnabledControl.model_validate(raw)
        raise ControlNotFoundError(row_id)

    def delete_control(self, row_id: int) -> None:
        data = self._load()
        remaining = [c for c in data["controls"] if c.get("id") != row_id]
        if len(remaining) == len(data["controls"]):
            raise ControlNotFoundError(row_id)
        data["controls"] = remaining
        self._save(data)

    # -- clients and purchases --------------------------------------------

    def add_client(self, client: Client) -> Client:
        data = self._load()
        data["clients"] = [c for c in data["clients"] if c.get("id") != client.id]
        data["clients"].append(client.model_dump(mode="json"))
        self._save(data)
        return client

    def get_client(self, client_id: str) -> Optional[Client]:
        for raw in self._load()["clients"]:
            if raw.get("id") == client_id:
                return Client.model_validate(raw)
        return None

    def add_purchase(self, purchase: Purchase) -> Purchase:
        data = self._load()
        data["purchases"].append(purchase.model_dump(mode="json"))
        self._save(data)
        return purchase

    def get_active_purchase(self, client_id: str, toolkit_id: int, today: date) -> Optional[Purchase]:
        """Most recent purchase of the toolkit that is still valid on ``today``."""
        purchases = [
            Purchase.model_validate(p)
            for p in self._load()["purchases"]
            if p.get("client_id") == client_id and p.get("toolkit_id") == toolkit_id
        ]
        active = [p for p in purchases if p.is_active(today)]
        if not active:
            return None
        return max(active, key=lambda p: (p.expires_at or date.max, p.purchased_at))
