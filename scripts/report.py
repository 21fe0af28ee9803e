#!/usr/bin/env python3
"""
File reports and the report artifact.

Findings from the matcher are combined into one FileReport per document.
The verdict rule: a file passes when it shows any positive signal (a required
tag was found or an attribute value was whitelisted). A file with no positive
signal fails even if nothing was reported against it.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional, Tuple


SEPARATOR = "----------------------"
COMPLETED_LINE = "All files processed!"
STOPPED_LINE = "Processing stopped by user!"
PARSE_ERROR_NOTE = "Error parsing XML"
READ_ERROR_NOTE = "Error reading file"


class FindingKind(Enum):
    TAG_FOUND = "tag_found"
    TAG_MISSING = "tag_missing"
    ATTRIBUTE_MATCH = "attribute_match"
    ATTRIBUTE_MISMATCH = "attribute_mismatch"


POSITIVE_KINDS = (FindingKind.TAG_FOUND, FindingKind.ATTRIBUTE_MATCH)


class Verdict(Enum):
    PASS = "pass"
    FAIL = "fail"


@dataclass(frozen=True)
class Finding:
    """
    One pass/fail observation about a tag or an attribute.

    Attributes:
        kind: What was observed
        subject: Tag or attribute name
        scope: Name of the rule set that produced the finding
        detail: Observed attribute value (attribute findings only)
        expected: Allowed values (attribute mismatches only)
    """
    kind: FindingKind
    subject: str
    scope: str = "global"
    detail: Optional[str] = None
    expected: Tuple[str, ...] = ()

    @property
    def passed(self) -> bool:
        return self.kind in POSITIVE_KINDS

    def format(self) -> str:
        """
        Format the finding as one report line.

        Example:
            Attribute mismatch (global): staffNumber found 9999, expected one of 2950, 26368, 6936
        """
        if self.kind is FindingKind.TAG_FOUND:
            return f"Tag found ({self.scope}): {self.subject}"
        if self.kind is FindingKind.TAG_MISSING:
            return f"Missing tag ({self.scope}): {self.subject}"
        if self.kind is FindingKind.ATTRIBUTE_MATCH:
            return f"Attribute match ({self.scope}): {self.subject} = {self.detail}"
        return (
            f"Attribute mismatch ({self.scope}): {self.subject} found {self.detail}, "
            f"expected one of {', '.join(self.expected)}"
        )


@dataclass
class FileReport:
    """
    Outcome of validating one file.

    Attributes:
        file: File name as shown in the report
        passed: Positive findings, in the order they were made
        failed: Negative findings, in the order they were made
        attribute_matched: Some attribute value was whitelisted, even if the
            finding itself was deduplicated away
        static_data: Document was classified as static data
        error: Parse or read error note; set only for unprocessable files
    """
    file: str
    passed: List[Finding] = field(default_factory=list)
    failed: List[Finding] = field(default_factory=list)
    attribute_matched: bool = False
    static_data: bool = False
    error: Optional[str] = None

    @property
    def verdict(self) -> Verdict:
        if self.error is not None:
            return Verdict.FAIL
        if self.passed or self.attribute_matched:
            return Verdict.PASS
        return Verdict.FAIL

    @property
    def is_pass(self) -> bool:
        return self.verdict is Verdict.PASS

    def format_block(self) -> str:
        """Render the report block for this file, trailing separator included."""
        lines = [f"File: {self.file}"]
        if self.error is not None:
            lines.append(self.error)
        else:
            if self.passed:
                lines.append("PASSED:")
                lines.extend(f"  - {finding.format()}" for finding in self.passed)
            if self.failed:
                lines.append("FAILED:")
                lines.extend(f"  - {finding.format()}" for finding in self.failed)
        lines.append(SEPARATOR)
        return "\n" + "\n".join(lines) + "\n"


def aggregate(file: str, tag_findings: Iterable[Finding],
              attribute_findings: Iterable[Finding],
              attribute_matched: bool = False,
              static_data: bool = False) -> FileReport:
    """
    Combine the findings for one file into a FileReport.

    Findings are split by polarity, keeping their order. The verdict is
    derived from the positive findings and attribute_matched.

    Args:
        file: File name for the report
        tag_findings: Findings from tag checks
        attribute_findings: Findings from attribute checks
        attribute_matched: Whether any whitelisted value was seen
        static_data: Whether the file was classified as static data

    Returns:
        FileReport for the file
    """
    report = FileReport(file=file, attribute_matched=attribute_matched, static_data=static_data)
    for finding in list(tag_findings) + list(attribute_findings):
        if finding.passed:
            report.passed.append(finding)
        else:
            report.failed.append(finding)
    return report


def error_report(file: str, note: str = PARSE_ERROR_NOTE, static_data: bool = False) -> FileReport:
    """FileReport for a file that could not be read or parsed."""
    return FileReport(file=file, static_data=static_data, error=note)


def report_file_name(now: Optional[datetime] = None) -> str:
    """
    Build a timestamped report file name.

    Example:
        >>> report_file_name(datetime(2025, 3, 1, 12, 30, 5, 120000, tzinfo=timezone.utc))
        'report-2025-03-01T12-30-05-120Z.txt'
    """
    now = now or datetime.now(timezone.utc)
    stamp = now.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"
    return "report-" + stamp.replace(":", "-").replace(".", "-") + ".txt"


class ReportWriter:
    """
    Append-only writer for the text report.

    Every block goes out in a single write followed by a flush, so a report
    cut short by cancellation or a crash ends on a complete block.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    @classmethod
    def in_directory(cls, directory: Path, now: Optional[datetime] = None) -> "ReportWriter":
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        return cls(directory / report_file_name(now))

    def append(self, text: str) -> None:
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(text)
            f.flush()

    def write_report(self, report: FileReport) -> None:
        self.append(report.format_block())

    def write_line(self, line: str) -> None:
        self.append(line + "\n")

    def read(self) -> str:
        if not self.path.exists():
            return ""
        return self.path.read_text(encoding="utf-8")
