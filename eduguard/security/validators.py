"""
Input Validation Module

Field-specific validation of user input (generic text, titles, document
content, uploaded file metadata) on top of the threat detectors.

Validation never raises and never mutates its input: every problem is
reported as a ValidationIssue inside a ValidationResult, and a
sanitized candidate value is returned for the caller to persist if it
chooses to.
"""

import os
import re
from typing import Any, Dict, List, Optional, Union

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from eduguard.core.config import SecuritySettings
from eduguard.core.constants import (
    MAX_FILE_NAME_LENGTH,
    MIME_EXTENSIONS,
    SUSPICIOUS_EXTENSIONS,
)
from eduguard.core.logging_config import preview
from eduguard.models.requests import FileMetadata, InputKind
from eduguard.models.responses import ValidationIssue, ValidationResult
from eduguard.security.threat_detector import (
    ThreatDetector,
    detect_suspicious_scheme,
)


# Error codes
REQUIRED = "REQUIRED"
INVALID_TYPE = "INVALID_TYPE"
INVALID_FORMAT = "INVALID_FORMAT"
INPUT_TOO_LONG = "INPUT_TOO_LONG"
TITLE_TOO_LONG = "TITLE_TOO_LONG"
CONTENT_TOO_LARGE = "CONTENT_TOO_LARGE"
INVALID_CHARACTERS = "INVALID_CHARACTERS"
XSS_ATTEMPT = "XSS_ATTEMPT"
SQL_INJECTION = "SQL_INJECTION"
SUSPICIOUS_PATTERN = "SUSPICIOUS_PATTERN"
FILE_NAME_TOO_LONG = "FILE_NAME_TOO_LONG"
EMPTY_FILE = "EMPTY_FILE"
FILE_TOO_LARGE = "FILE_TOO_LARGE"
INVALID_FILE_TYPE = "INVALID_FILE_TYPE"
SUSPICIOUS_FILE_TYPE = "SUSPICIOUS_FILE_TYPE"
MULTIPLE_EXTENSIONS = "MULTIPLE_EXTENSIONS"
MIME_MISMATCH = "MIME_MISMATCH"

THREAT_CODES = frozenset({XSS_ATTEMPT, SQL_INJECTION, SUSPICIOUS_PATTERN})

TITLE_PATTERN = re.compile(r'^[a-zA-Z0-9\s\-_.]+$')


class InputValidator:
    """
    Validate user inputs for security threats and field rules.

    Example:
        >>> validator = InputValidator()
        >>> validator.validate(InputKind.TITLE, "Week 3 - Reading notes").is_valid
        True
        >>> validator.validate(InputKind.GENERIC, "<script>alert(1)</script>").error_codes
        ['XSS_ATTEMPT']
    """

    def __init__(
        self,
        settings: Optional[SecuritySettings] = None,
        detector: Optional[ThreatDetector] = None
    ):
        self.settings = settings if settings is not None else SecuritySettings()
        self.detector = detector if detector is not None else ThreatDetector(
            probe_threshold=self.settings.probe_threshold,
            probe_window_ms=self.settings.probe_window_ms
        )

    def validate(self, kind: Union[InputKind, str], value: Any) -> ValidationResult:
        """
        Validate ``value`` according to the rules of ``kind``.

        Args:
            kind: generic, title, content or file
            value: Text, or file metadata (dict / FileMetadata) for kind=file

        Returns:
            ValidationResult; never raises
        """
        try:
            kind = InputKind(kind)
        except ValueError:
            return ValidationResult.fail(ValidationIssue(
                field="kind",
                code=INVALID_TYPE,
                message=f"Unknown input kind: {kind!r}"
            ))

        if kind is InputKind.FILE:
            return self.validate_file(value)
        if kind is InputKind.TITLE:
            return self.validate_title(value)
        if kind is InputKind.CONTENT:
            return self.validate_content(value)
        return self.validate_user_input(value)

    # ===== Text fields =====

    def _threat_issues(self, field: str, value: str) -> List[ValidationIssue]:
        issues = []
        if self.detector.detect_xss(value):
            issues.append(ValidationIssue(
                field=field,
                code=XSS_ATTEMPT,
                message="Input contains potentially malicious markup"
            ))
        if self.detector.detect_sql_injection(value):
            issues.append(ValidationIssue(
                field=field,
                code=SQL_INJECTION,
                message="Input contains a SQL injection pattern"
            ))
        if not issues and detect_suspicious_scheme(value):
            issues.append(ValidationIssue(
                field=field,
                code=SUSPICIOUS_PATTERN,
                message="Input contains suspicious patterns"
            ))
        if issues:
            logger.warning(
                f"Rejected {field}: {[i.code for i in issues]} in {preview(value)!r}"
            )
        return issues

    @staticmethod
    def _type_issue(field: str, value: Any) -> Optional[ValidationIssue]:
        if isinstance(value, str):
            return None
        return ValidationIssue(
            field=field,
            code=INVALID_TYPE,
            message=f"Expected a string, got {type(value).__name__}"
        )

    def validate_user_input(self, value: Any, field: str = "input") -> ValidationResult:
        """
        Validate free-form user input (chat messages, search queries).

        Valid input is returned HTML-sanitized as ``sanitized_value``.
        """
        type_issue = self._type_issue(field, value)
        if type_issue:
            return ValidationResult.fail(type_issue)

        if len(value) > self.settings.max_input_length:
            return ValidationResult.fail(ValidationIssue(
                field=field,
                code=INPUT_TOO_LONG,
                message=f"Input is too long: maximum {self.settings.max_input_length} characters"
            ))

        issues = self._threat_issues(field, value)
        if issues:
            return ValidationResult.fail(*issues)

        return ValidationResult.ok(self.detector.sanitize_html(value))

    def validate_content(self, value: Any, field: str = "content") -> ValidationResult:
        """Validate document content; valid content is returned unchanged."""
        type_issue = self._type_issue(field, value)
        if type_issue:
            return ValidationResult.fail(type_issue)

        if not value.strip():
            return ValidationResult.fail(ValidationIssue(
                field=field, code=REQUIRED, message="Content is required"
            ))

        if len(value) > self.settings.max_content_length:
            return ValidationResult.fail(ValidationIssue(
                field=field,
                code=CONTENT_TOO_LARGE,
                message="Content is too large"
            ))

        issues = self._threat_issues(field, value)
        if issues:
            return ValidationResult.fail(*issues)

        return ValidationResult.ok(value)

    def validate_title(self, value: Any, field: str = "title") -> ValidationResult:
        """
        Validate a document or activity title.

        Titles are rejected rather than sanitized: stripping characters
        would silently change what the user named the document.
        """
        type_issue = self._type_issue(field, value)
        if type_issue:
            return ValidationResult.fail(type_issue)

        if not value.strip():
            return ValidationResult.fail(ValidationIssue(
                field=field, code=REQUIRED, message="Title is required"
            ))

        issues = []
        if len(value) > self.settings.max_title_length:
            issues.append(ValidationIssue(
                field=field,
                code=TITLE_TOO_LONG,
                message=f"Title must be at most {self.settings.max_title_length} characters"
            ))
        if not TITLE_PATTERN.match(value):
            issues.append(ValidationIssue(
                field=field,
                code=INVALID_CHARACTERS,
                message="Title contains invalid characters"
            ))

        if issues:
            return ValidationResult.fail(*issues)
        return ValidationResult.ok(value)

    # ===== Files =====

    def validate_file(self, value: Union[FileMetadata, Dict[str, Any], Any]) -> ValidationResult:
        """
        Validate uploaded file metadata.

        Checks name length, size bounds, the MIME allow-list, executable
        and double extensions, and that the extension matches the MIME type.
        """
        if isinstance(value, FileMetadata):
            meta = value
        else:
            try:
                meta = FileMetadata.model_validate(value)
            except PydanticValidationError as e:
                return ValidationResult.fail(*[
                    ValidationIssue(
                        field=".".join(str(p) for p in err.get("loc", ())) or "file",
                        code=INVALID_FORMAT,
                        message=err.get("msg", "Invalid file metadata")
                    )
                    for err in e.errors()
                ])

        issues: List[ValidationIssue] = []
        name = meta.name
        lower_name = name.lower()
        mime_type = meta.mime_type.lower()

        if not name:
            issues.append(ValidationIssue(field="name", code=REQUIRED, message="File name is required"))
        elif len(name) > MAX_FILE_NAME_LENGTH:
            issues.append(ValidationIssue(
                field="name",
                code=FILE_NAME_TOO_LONG,
                message=f"File name must be at most {MAX_FILE_NAME_LENGTH} characters"
            ))

        if meta.size < 1:
            issues.append(ValidationIssue(field="size", code=EMPTY_FILE, message="File is empty"))
        elif meta.size > self.settings.max_file_size:
            issues.append(ValidationIssue(
                field="size",
                code=FILE_TOO_LARGE,
                message=f"File exceeds the maximum size of {self.settings.max_file_size} bytes"
            ))

        if mime_type not in self.settings.allowed_file_types:
            issues.append(ValidationIssue(
                field="type",
                code=INVALID_FILE_TYPE,
                message=f"File type '{meta.mime_type}' is not allowed"
            ))

        if name:
            if any(lower_name.endswith(ext) for ext in SUSPICIOUS_EXTENSIONS):
                issues.append(ValidationIssue(
                    field="name",
                    code=SUSPICIOUS_FILE_TYPE,
                    message="File type is not allowed for security reasons"
                ))
            elif lower_name.count(".") > 1:
                issues.append(ValidationIssue(
                    field="name",
                    code=MULTIPLE_EXTENSIONS,
                    message="Files with multiple extensions are not allowed"
                ))
            else:
                extension = os.path.splitext(lower_name)[1]
                expected = MIME_EXTENSIONS.get(mime_type)
                if expected is not None and extension not in expected:
                    issues.append(ValidationIssue(
                        field="name",
                        code=MIME_MISMATCH,
                        message=f"Extension '{extension or '(none)'}' does not match type '{meta.mime_type}'"
                    ))

        if issues:
            logger.info(f"Rejected upload {preview(name)!r}: {[i.code for i in issues]}")
            return ValidationResult.fail(*issues)

        return ValidationResult.ok(meta.model_dump())


def has_threat(result: ValidationResult) -> bool:
    """True if a failed result was caused by a threat detector."""
    return any(code in THREAT_CODES for code in result.error_codes)
