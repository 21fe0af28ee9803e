#!/usr/bin/env python3
"""
Batch Runner - validates a directory of XML files one at a time.

Files are processed strictly in order and each result is appended to the
report as soon as it is known. A per-file failure (unreadable file, bad
encoding, malformed XML) becomes a failed entry in the report; only the
batch preconditions stop a run before it starts.

Cancellation is cooperative: stop() sets a flag that is checked before each
file. The file being processed when the flag is set runs to completion.
"""

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from matcher import RuleEvaluator
from report import (
    COMPLETED_LINE,
    PARSE_ERROR_NOTE,
    READ_ERROR_NOTE,
    STOPPED_LINE,
    FileReport,
    ReportWriter,
    error_report,
)
from rule_set import DEFAULT_EXTENSION, RuleConfig
from xml_tree import MalformedDocument, parse_xml


logger = logging.getLogger(__name__)

FileCallback = Callable[[Path, FileReport], None]


class BatchError(Exception):
    """Base exception for batch precondition failures."""
    pass


class DirectoryNotFound(BatchError):
    """Raised when the input directory does not exist."""
    pass


class NoInputFiles(BatchError):
    """Raised when there is nothing to validate."""
    pass


@dataclass
class BatchResult:
    """
    Summary of one batch run.

    Attributes:
        passed_count: Files with a PASS verdict
        failed_count: Files with a FAIL verdict, unprocessable files included
        logs: Progress lines in the order they were produced
        report_path: Location of the text report
        stopped: Whether the run was cancelled before the last file
    """
    passed_count: int = 0
    failed_count: int = 0
    logs: List[str] = field(default_factory=list)
    report_path: str = ""
    stopped: bool = False

    @property
    def processed(self) -> int:
        return self.passed_count + self.failed_count

    def count(self, report: FileReport) -> None:
        if report.is_pass:
            self.passed_count += 1
        else:
            self.failed_count += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "logs": list(self.logs),
            "passed": self.passed_count,
            "failed": self.failed_count,
            "reportFile": self.report_path,
            "stopped": self.stopped,
        }


def discover_xml_files(root: Path, extension: str = DEFAULT_EXTENSION) -> List[Path]:
    """
    Find the documents to validate in a directory.

    Only direct children whose name ends with the extension are returned
    (case-insensitive), sorted by name.

    Args:
        root: Directory to scan
        extension: Document extension including the dot

    Returns:
        Sorted list of file paths

    Raises:
        DirectoryNotFound: If root is not an existing directory
        NoInputFiles: If no matching files exist
    """
    root = Path(root)
    if not root.is_dir():
        raise DirectoryNotFound(f"Directory not found: {root}")

    suffix = extension.lower()
    files = sorted(
        (path for path in root.iterdir()
         if path.is_file() and path.name.lower().endswith(suffix)),
        key=lambda path: path.name,
    )

    if not files:
        raise NoInputFiles(f"No {extension} files found in {root}")

    return files


def validate_file(path: Path, evaluator: RuleEvaluator) -> FileReport:
    """
    Read, parse and evaluate one file.

    Never raises for problems with the file itself: read, decode and parse
    failures come back as error reports.

    Args:
        path: File to validate
        evaluator: Evaluator holding the rule configuration

    Returns:
        FileReport for the file
    """
    name = path.name
    classifier = evaluator.config.classifier

    try:
        raw = path.read_bytes()
    except OSError as e:
        logger.warning("%s: cannot read file: %s", name, e)
        return error_report(name, READ_ERROR_NOTE)

    try:
        text = raw.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        logger.warning("%s: not valid UTF-8: %s", name, e)
        return error_report(name, PARSE_ERROR_NOTE)

    try:
        tree = parse_xml(text)
    except MalformedDocument as e:
        logger.warning("%s: %s", name, e)
        # Classification by markers still works without a parse
        return error_report(name, PARSE_ERROR_NOTE,
                            static_data=classifier.is_static_data(text))

    return evaluator.evaluate(name, text, tree)


def run_batch(files: Sequence[Path], config: RuleConfig, writer: ReportWriter,
              stop_event: Optional[threading.Event] = None,
              on_file: Optional[FileCallback] = None) -> BatchResult:
    """
    Validate files in order and append each result to the report.

    Args:
        files: Files to process, in report order
        config: Loaded rule configuration
        writer: Report writer for this run
        stop_event: Checked before each file; when set the run stops
        on_file: Optional callback invoked after each file with its report

    Returns:
        BatchResult covering the files processed before any stop
    """
    result = BatchResult(report_path=str(writer.path))
    evaluator = RuleEvaluator(config)

    for path in files:
        if stop_event is not None and stop_event.is_set():
            logger.info("Stop requested, %d file(s) processed", result.processed)
            result.stopped = True
            result.logs.append(STOPPED_LINE)
            writer.write_line(STOPPED_LINE)
            break

        path = Path(path)
        report = validate_file(path, evaluator)

        if report.static_data and report.error is None:
            result.logs.append(f"Detected as Static Data file: {path.name}")

        writer.write_report(report)
        result.count(report)

        if report.error is not None:
            result.logs.append(f"Error processing: {path.name}")
        else:
            result.logs.append(f"Processed: {path.name}")
        logger.debug("%s: %s", path.name, report.verdict.value)

        if on_file is not None:
            on_file(path, report)

    if not result.stopped:
        writer.write_line(COMPLETED_LINE)
        result.logs.append(COMPLETED_LINE)

    logger.info(
        "Batch finished: %d passed, %d failed, report at %s",
        result.passed_count, result.failed_count, result.report_path,
    )
    return result


class BatchRunner:
    """
    Control surface for batch runs: start a run, request a stop.

    One runner drives one run at a time. stop() may be called from another
    thread or a signal handler while start() is running.
    """

    def __init__(self, config: RuleConfig, report_dir: Path):
        self.config = config
        self.report_dir = Path(report_dir)
        self._stop_event = threading.Event()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> Dict[str, str]:
        """Request the running batch to stop before its next file."""
        self._stop_event.set()
        return {"status": "stopping"}

    def start(self, files: Iterable[Path],
              on_file: Optional[FileCallback] = None) -> BatchResult:
        """
        Run a batch over an explicit list of files.

        Clears any earlier stop request first.

        Raises:
            NoInputFiles: If the list is empty
        """
        files = [Path(path) for path in files]
        if not files:
            raise NoInputFiles("No input files given")

        self._stop_event.clear()
        writer = ReportWriter.in_directory(self.report_dir)
        logger.info("Validating %d file(s), report at %s", len(files), writer.path)
        return run_batch(files, self.config, writer,
                         stop_event=self._stop_event, on_file=on_file)

    def start_directory(self, root: Path,
                        on_file: Optional[FileCallback] = None) -> BatchResult:
        """
        Run a batch over the documents found in a directory.

        Raises:
            DirectoryNotFound: If the directory does not exist
            NoInputFiles: If it holds no documents
        """
        files = discover_xml_files(root, self.config.extension)
        return self.start(files, on_file=on_file)
