"""Tests for services.archive_service and services.export_service."""

import os
import re
import zipfile
from pathlib import Path

import pytest
import rarfile

from conftest import make_documents, write_bundle
from roster_reconcile.models.reconciliation_models import DocumentEntry
from roster_reconcile.services import archive_service
from roster_reconcile.services.archive_service import check_archive_integrity, extract_archive
from roster_reconcile.services.export_service import create_output_bundle
from roster_reconcile.utils.error_handlers import ExtractionError, ValidationError


class TestExtractArchive:
    def test_extracts_nested_members(self, tmp_path: Path):
        bundle = write_bundle(tmp_path / "tickets.zip", ["T-1-李雷--a.pdf", "group/T-2-韩梅梅--b.pdf"])
        target = tmp_path / "temp" / "s1"
        extract_archive(str(bundle), str(target))
        assert (target / "T-1-李雷--a.pdf").is_file()
        assert (target / "group" / "T-2-韩梅梅--b.pdf").is_file()

    def test_cp936_member_names(self, tmp_path: Path):
        bundle = tmp_path / "legacy.zip"
        utf8_name = "T-1-李雷--a.pdf".encode("utf-8")
        gbk_name = "T-1-李雷--abc.pdf".encode("cp936")
        assert len(gbk_name) == len(utf8_name)
        with zipfile.ZipFile(bundle, "w") as zf:
            zf.writestr("T-1-李雷--a.pdf", b"pdf")

        # rewrite the member name as GBK bytes and clear the UTF-8 flag,
        # the way legacy Windows archivers store it
        raw = bytearray(bundle.read_bytes().replace(utf8_name, gbk_name))
        local = raw.find(b"PK\x03\x04")
        central = raw.find(b"PK\x01\x02")
        raw[local + 6:local + 8] = b"\x00\x00"
        raw[central + 8:central + 10] = b"\x00\x00"
        bundle.write_bytes(bytes(raw))

        target = tmp_path / "out"
        extract_archive(str(bundle), str(target), filename_encoding="cp936")
        assert os.listdir(target) == ["T-1-李雷--abc.pdf"]

    def test_macos_resource_folders_are_skipped(self, tmp_path: Path):
        bundle = write_bundle(tmp_path / "tickets.zip", ["T-1-A--a.pdf", "__MACOSX/._T-1-A--a.pdf"])
        target = tmp_path / "out"
        extract_archive(str(bundle), str(target))
        assert os.listdir(target) == ["T-1-A--a.pdf"]

    def test_truncated_archive(self, tmp_path: Path):
        bundle = write_bundle(tmp_path / "tickets.zip", ["T-1-A--a.pdf"])
        bundle.write_bytes(bundle.read_bytes()[:40])
        target = tmp_path / "out"
        with pytest.raises(ExtractionError):
            extract_archive(str(bundle), str(target))
        assert not target.exists()
        assert not [p for p in os.listdir(tmp_path) if p.startswith(".partial-")]

    def test_crc_mismatch(self, tmp_path: Path):
        bundle = write_bundle(tmp_path / "tickets.zip", ["T-1-A--a.pdf"])
        raw = bundle.read_bytes()
        bundle.write_bytes(raw.replace(b"%PDF-1.4", b"%PDF-9.9", 1))
        assert not check_archive_integrity(str(bundle))
        with pytest.raises(ExtractionError):
            extract_archive(str(bundle), str(tmp_path / "out"))

    def test_unsupported_format(self, tmp_path: Path):
        seven_zip = tmp_path / "tickets.7z"
        seven_zip.write_bytes(b"7z\xbc\xaf\x27\x1c")
        with pytest.raises(ValidationError):
            extract_archive(str(seven_zip), str(tmp_path / "out"))

    def test_rar_is_opened_with_rarfile(self, tmp_path: Path, monkeypatch):
        bundle = tmp_path / "tickets.rar"
        bundle.write_bytes(b"Rar!")
        opened = []

        class FakeRar:
            def __init__(self, path, errors="stop"):
                opened.append((path, errors))

            def __enter__(self):
                return self

            def __exit__(self, *exc):
                return False

            def testrar(self):
                return None

            def infolist(self):
                return [zipfile.ZipInfo("T-1-A--a.pdf"), zipfile.ZipInfo("__MACOSX/._T-1-A--a.pdf")]

            def extractall(self, path, members):
                for member in members:
                    Path(path, member.filename).write_bytes(b"pdf")

        monkeypatch.setattr(archive_service.rarfile, "RarFile", FakeRar)
        target = tmp_path / "out"
        extract_archive(str(bundle), str(target))

        assert os.listdir(target) == ["T-1-A--a.pdf"]
        assert opened == [(str(bundle), "strict"), (str(bundle), "strict")]

    def test_not_a_rar_archive(self, tmp_path: Path):
        bundle = tmp_path / "tickets.rar"
        bundle.write_bytes(b"renamed spreadsheet, not a RAR archive")
        assert not check_archive_integrity(str(bundle))
        target = tmp_path / "out"
        with pytest.raises(ExtractionError):
            extract_archive(str(bundle), str(target))
        assert not target.exists()

    def test_damaged_rar_member(self, tmp_path: Path, monkeypatch):
        bundle = tmp_path / "tickets.rar"
        bundle.write_bytes(b"Rar!")

        class DamagedRar:
            def __init__(self, path, errors="stop"):
                pass

            def __enter__(self):
                return self

            def __exit__(self, *exc):
                return False

            def testrar(self):
                raise rarfile.BadRarFile("CRC error in T-1-A--a.pdf")

        monkeypatch.setattr(archive_service.rarfile, "RarFile", DamagedRar)
        with pytest.raises(ExtractionError):
            extract_archive(str(bundle), str(tmp_path / "out"))
        assert not [p for p in os.listdir(tmp_path) if p.startswith(".partial-")]


class TestOutputBundle:
    def test_bundle_contains_exactly_the_documents(self, tmp_path: Path):
        a, b = make_documents(tmp_path / "docs", ["x/T-1-A--a.pdf", "y/T-1-A--a.pdf"])
        output = tmp_path / "out" / "result.zip"
        create_output_bundle([(str(a), a.name), (str(b), b.name)], str(output))
        with zipfile.ZipFile(output) as zf:
            assert sorted(zf.namelist()) == ["T-1-A--a (2).pdf", "T-1-A--a.pdf"]
        assert not Path(f"{output}.partial").exists()

    def test_missing_source_leaves_nothing_behind(self, tmp_path: Path):
        output = tmp_path / "result.zip"
        with pytest.raises(OSError):
            create_output_bundle([(str(tmp_path / "gone.pdf"), "gone.pdf")], str(output))
        assert os.listdir(tmp_path) == []


class TestSheetFinalizer:
    def test_export_names(self, finalizer, tmp_path: Path, clock):
        [doc] = make_documents(tmp_path / "docs", ["T-1-A--a.pdf"])
        entry = DocumentEntry(path=str(doc), filename=doc.name, room="1", name="A", normalized_name="A")
        path, filename, download_id = finalizer.export("s1", "名单#1 v1..final", [entry])
        assert filename == "名单#1 v1..final.zip"
        assert download_id.startswith(f"s1-{int(clock() * 1000)}-")
        # the roster name only travels as the download filename
        assert "名单" not in download_id
        assert re.fullmatch(r"s1-\d+-[0-9a-f]{12}", download_id)
        assert os.path.isfile(path)

    def test_finalize_without_documents_has_no_download(self, finalizer, session):
        processed = finalizer.finalize(
            session, display_name="roster.xlsx", output_base_name="roster", sheet_name="Sheet1",
            documents=[], total_count=2, unmatched=[{"room": "1", "name": "A"}],
        )
        summary = processed.to_summary()
        assert summary["download_url"] is None
        assert summary["matched"] == 0
        assert summary["unmatched_count"] == 1
        assert session.processed_files == [processed]
