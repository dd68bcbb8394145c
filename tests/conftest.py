"""Shared fixtures: workbooks, ticket trees, bundles, a fake clock and the Flask app."""

from __future__ import annotations

import zipfile
from pathlib import Path
from typing import Dict, Iterable, List, Sequence

import pytest
from openpyxl import Workbook

from roster_reconcile.app import create_app
from roster_reconcile.models.reconciliation_models import Session
from roster_reconcile.services.export_service import SheetFinalizer


class FakeClock:
    """Manually advanced clock, in epoch seconds"""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def write_workbook(path: Path, sheets: Dict[str, Sequence[Sequence]]) -> Path:
    """Write an .xlsx with one sheet per entry, rows given as lists of cells"""
    wb = Workbook()
    wb.remove(wb.active)
    for sheet_name, rows in sheets.items():
        ws = wb.create_sheet(sheet_name)
        for row in rows:
            ws.append(list(row))
    wb.save(path)
    return path


def make_documents(root: Path, filenames: Iterable[str]) -> List[Path]:
    """Create empty ticket files (paths may contain sub-directories)"""
    paths = []
    for filename in filenames:
        path = root / filename
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"%PDF-1.4 ticket " + filename.encode("utf-8"))
        paths.append(path)
    return paths


def write_bundle(path: Path, filenames: Iterable[str]) -> Path:
    """Write a ZIP bundle of fake ticket files"""
    with zipfile.ZipFile(path, "w") as zf:
        for filename in filenames:
            zf.writestr(filename, b"%PDF-1.4 ticket " + filename.encode("utf-8"))
    return path


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def session(tmp_path: Path, clock: FakeClock) -> Session:
    docs = tmp_path / "docs"
    docs.mkdir()
    return Session(session_id="s1", created_at=clock(), extract_path=str(docs))


@pytest.fixture
def finalizer(tmp_path: Path, clock: FakeClock) -> SheetFinalizer:
    output = tmp_path / "output"
    output.mkdir()
    return SheetFinalizer(str(output), clock=clock)


@pytest.fixture
def app(tmp_path: Path, clock: FakeClock):
    data = tmp_path / "data"
    app = create_app({
        "TESTING": True,
        "UPLOAD_FOLDER": str(data / "uploads"),
        "EXTRACT_FOLDER": str(data / "temp"),
        "OUTPUT_FOLDER": str(data / "output"),
        "CLEANUP_ENABLED": False,
        "RATELIMIT_ENABLED": False,
    }, clock=clock)
    return app


@pytest.fixture
def client(app):
    return app.test_client()
