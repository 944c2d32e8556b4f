# tests/test_file_policy.py — Upload validation and key derivation
import re

import pytest

from errors import FileTooLarge, InvalidContentType, InvalidFileType
from file_policy import (
    KEY_PREFIX, MAX_FILE_SIZE,
    build_object_key, client_basename, file_extension, validate_upload,
)

MIB = 1024 * 1024


class TestValidateUpload:
    def test_rejects_executable_regardless_of_size(self):
        for size in (0, 10, MAX_FILE_SIZE):
            with pytest.raises(InvalidFileType):
                validate_upload("malware.exe", size, "application/octet-stream")

    def test_accepts_small_pdf(self):
        assert validate_upload("report.pdf", 1024, "application/pdf") == "pdf"

    def test_rejects_oversized_csv(self):
        with pytest.raises(FileTooLarge) as exc:
            validate_upload("huge.csv", 101 * MIB, "text/csv")
        assert exc.value.message == "File too large. Max 100MB allowed."

    def test_size_limit_is_inclusive(self):
        assert validate_upload("data.csv", 100 * MIB, "text/csv") == "csv"
        with pytest.raises(FileTooLarge):
            validate_upload("data.csv", 100 * MIB + 1, "text/csv")

    def test_size_checked_before_extension(self):
        with pytest.raises(FileTooLarge):
            validate_upload("malware.exe", 101 * MIB)

    def test_extension_is_case_insensitive(self):
        assert validate_upload("Budget.XLSX", 10) == "xlsx"

    def test_only_final_extension_counts(self):
        with pytest.raises(InvalidFileType):
            validate_upload("report.pdf.exe", 10)
        assert validate_upload("archive.exe.txt", 10, "text/plain") == "txt"

    def test_missing_extension(self):
        with pytest.raises(InvalidFileType):
            validate_upload("README", 10)

    @pytest.mark.parametrize("content_type", [None, "", "application/octet-stream"])
    def test_generic_mime_is_let_through(self, content_type):
        assert validate_upload("notes.txt", 10, content_type) == "txt"

    def test_mime_parameters_are_ignored(self):
        assert validate_upload("notes.txt", 10, "text/plain; charset=utf-8") == "txt"

    def test_specific_unknown_mime_rejected(self):
        with pytest.raises(InvalidContentType):
            validate_upload("report.pdf", 10, "image/png")


class TestObjectKeys:
    def test_key_shape(self):
        key = build_object_key("My Report (final).docx")
        assert re.fullmatch(r"task-executions/[0-9a-f]{16}_My_Report__final_\.docx", key)

    def test_keys_do_not_collide(self):
        assert build_object_key("notes.txt") != build_object_key("notes.txt")

    def test_traversal_is_neutralised(self):
        key = build_object_key("../../etc/passwd.txt")
        assert key.startswith(KEY_PREFIX)
        assert key.count("/") == 1
        assert key.endswith("_passwd.txt")

    def test_empty_base_falls_back(self):
        assert build_object_key("").endswith("_file")


def test_client_basename_strips_both_separators():
    assert client_basename("C:\\Users\\carla\\notes.txt") == "notes.txt"
    assert client_basename("dir/sub/notes.txt") == "notes.txt"


def test_file_extension():
    assert file_extension("a/b/c.Tar.CSV") == "csv"
    assert file_extension("noext") == ""
