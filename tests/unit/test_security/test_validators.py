"""
Unit tests for input validation.

Validation never raises; every problem comes back as a ValidationIssue.
"""

import pytest
from eduguard.core.config import SecuritySettings
from eduguard.models.requests import FileMetadata, InputKind
from eduguard.security.validators import InputValidator, has_threat


@pytest.fixture
def validator():
    return InputValidator()


class TestGenericInput:
    """Tests for generic user input."""

    def test_valid_input_is_sanitized(self, validator):
        """Test that valid input comes back HTML-sanitized."""
        result = validator.validate(InputKind.GENERIC, "<b>Hello</b> <span>class</span>")
        assert result.is_valid
        assert result.sanitized_value == "<b>Hello</b> class"
        assert result.errors == []

    def test_xss_rejected(self, validator):
        """Test that XSS payloads are rejected with XSS_ATTEMPT."""
        result = validator.validate(InputKind.GENERIC, "<script>alert(1)</script>")
        assert not result.is_valid
        assert result.error_codes == ["XSS_ATTEMPT"]
        assert result.sanitized_value is None
        assert has_threat(result)

    def test_sql_injection_rejected(self, validator):
        """Test that SQL injection is rejected with SQL_INJECTION."""
        result = validator.validate("generic", "'; DROP TABLE users; --")
        assert not result.is_valid
        assert "SQL_INJECTION" in result.error_codes

    def test_data_uri_is_suspicious(self, validator):
        """Test that base64 data URIs are rejected as suspicious."""
        result = validator.validate(InputKind.GENERIC, "data:application/octet-stream;base64,AAAA")
        assert result.error_codes == ["SUSPICIOUS_PATTERN"]

    def test_too_long(self):
        """Test the configurable length limit."""
        validator = InputValidator(SecuritySettings(max_input_length=10))
        result = validator.validate(InputKind.GENERIC, "x" * 11)
        assert result.error_codes == ["INPUT_TOO_LONG"]
        assert not has_threat(result)

    def test_non_string(self, validator):
        """Test that non-string values yield INVALID_TYPE."""
        result = validator.validate(InputKind.GENERIC, 42)
        assert result.error_codes == ["INVALID_TYPE"]

    def test_unknown_kind(self, validator):
        """Test that an unknown kind is reported, not raised."""
        result = validator.validate("nonsense", "hello")
        assert result.error_codes == ["INVALID_TYPE"]
        assert result.errors[0].field == "kind"

    def test_input_not_mutated(self, validator):
        """Test that the caller's value is left untouched."""
        value = {"name": "notes.pdf", "size": 10, "type": "application/pdf"}
        snapshot = dict(value)
        validator.validate(InputKind.FILE, value)
        assert value == snapshot


class TestTitle:
    """Tests for title validation."""

    def test_valid_title(self, validator):
        """Test that an ordinary title is accepted unchanged."""
        result = validator.validate_title("Week 3 - Reading_notes.v2")
        assert result.is_valid
        assert result.sanitized_value == "Week 3 - Reading_notes.v2"

    def test_invalid_characters(self, validator):
        """Test that markup in titles is a hard rejection, not sanitized."""
        result = validator.validate_title("<b>Title</b>")
        assert result.error_codes == ["INVALID_CHARACTERS"]

    def test_too_long(self, validator):
        """Test titles longer than 255 characters."""
        result = validator.validate_title("a" * 256)
        assert result.error_codes == ["TITLE_TOO_LONG"]

    def test_required(self, validator):
        """Test that blank titles are rejected."""
        assert validator.validate_title("   ").error_codes == ["REQUIRED"]


class TestContent:
    """Tests for document content validation."""

    def test_valid_content_unchanged(self, validator):
        """Test that valid content is returned as-is."""
        content = "Chapter 1\n\nPhotosynthesis converts light into energy."
        result = validator.validate_content(content)
        assert result.is_valid
        assert result.sanitized_value == content

    def test_content_too_large(self):
        """Test the content size limit."""
        validator = InputValidator(SecuritySettings(max_content_length=100))
        result = validator.validate_content("x" * 101)
        assert result.error_codes == ["CONTENT_TOO_LARGE"]

    def test_content_with_script(self, validator):
        """Test that content carrying scripts is rejected."""
        result = validator.validate_content("Intro <script>steal()</script>")
        assert "XSS_ATTEMPT" in result.error_codes

    def test_empty_content(self, validator):
        """Test that empty content is required."""
        assert validator.validate_content("").error_codes == ["REQUIRED"]


class TestFile:
    """Tests for file metadata validation."""

    def test_valid_pdf(self, validator):
        """Test that a PDF within limits is accepted."""
        result = validator.validate_file({"name": "syllabus.pdf", "size": 1024, "type": "application/pdf"})
        assert result.is_valid
        assert result.sanitized_value["mime_type"] == "application/pdf"

    def test_accepts_model_instance(self, validator):
        """Test that FileMetadata instances are accepted directly."""
        meta = FileMetadata(name="syllabus.pdf", size=1024, mime_type="application/pdf")
        assert validator.validate(InputKind.FILE, meta).is_valid

    def test_too_large(self, validator):
        """Test files over 50MB."""
        result = validator.validate_file({"name": "big.pdf", "size": 52428801, "type": "application/pdf"})
        assert result.error_codes == ["FILE_TOO_LARGE"]

    def test_empty_file(self, validator):
        """Test zero-byte files."""
        result = validator.validate_file({"name": "empty.pdf", "size": 0, "type": "application/pdf"})
        assert result.error_codes == ["EMPTY_FILE"]

    def test_disallowed_type(self, validator):
        """Test MIME types outside the allow-list."""
        result = validator.validate_file({"name": "notes.txt", "size": 10, "type": "text/plain"})
        assert result.error_codes == ["INVALID_FILE_TYPE"]

    def test_executable_extension(self, validator):
        """Test executable extensions disguised with an allowed type."""
        result = validator.validate_file({"name": "setup.exe", "size": 10, "type": "application/pdf"})
        assert "SUSPICIOUS_FILE_TYPE" in result.error_codes

    def test_double_extension(self, validator):
        """Test multiple extensions."""
        result = validator.validate_file({"name": "report.pdf.js", "size": 10, "type": "application/pdf"})
        assert "MULTIPLE_EXTENSIONS" in result.error_codes

    def test_mime_mismatch(self, validator):
        """Test an extension that does not match the declared type."""
        result = validator.validate_file({"name": "report.docx", "size": 10, "type": "application/pdf"})
        assert result.error_codes == ["MIME_MISMATCH"]

    def test_malformed_metadata(self, validator):
        """Test that malformed metadata maps to INVALID_FORMAT."""
        result = validator.validate_file({"name": "x.pdf", "size": "huge"})
        assert not result.is_valid
        assert set(result.error_codes) == {"INVALID_FORMAT"}
        assert {e.field for e in result.errors} == {"size", "type"}

    def test_allow_list_is_configurable(self):
        """Test that extra MIME types can be allowed."""
        validator = InputValidator(SecuritySettings(allowed_file_types=["application/pdf", "text/plain"]))
        result = validator.validate_file({"name": "notes.txt", "size": 10, "type": "text/plain"})
        assert result.is_valid
