"""File watcher: PollingObserver + ImportPipeline orchestration.

Watches a drop folder for new statement files (.csv, .ofx, .qfx, .txt),
waits for file stability (size+mtime stable for 10s), validates file
completeness, picks the parser by extension, then commits the rows for
the configured user and account:
  detect → stable → decode → parse → commit

Uses PollingObserver as primary (not fallback) since inotify is unreliable
on network and container volumes. 30-second polling interval.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from watchdog.events import FileSystemEventHandler

from ledgerlink.errors import LedgerError
from ledgerlink.ledger.commit import ImportPayload
from ledgerlink.parsers.base import BaseParser
from ledgerlink.parsers.csv_parser import DelimitedParser
from ledgerlink.parsers.ofx import OfxParser
from ledgerlink.parsers.statement_text import StatementTextParser

if TYPE_CHECKING:
    from ledgerlink.service import LedgerService

logger = logging.getLogger(__name__)

PARSERS_BY_EXTENSION = {
    ".csv": DelimitedParser,
    ".ofx": OfxParser,
    ".qfx": OfxParser,
    ".txt": StatementTextParser,
}
SUPPORTED_EXTENSIONS = set(PARSERS_BY_EXTENSION)
PARSERS_BY_KIND = {
    "csv": DelimitedParser,
    "ofx": OfxParser,
    "pdf": StatementTextParser,
}

DEFAULT_STABILITY_SECONDS = 10
DEFAULT_CHECK_INTERVAL = 2.0

DEFAULT_POLL_INTERVAL = 30


@dataclass
class ImportResult:
    """Result of importing a single file."""
    file_name: str
    status: str  # "success", "duplicate", "error"
    imported_count: int = 0
    duplicate_count: int = 0
    invalid_count: int = 0
    categorized_count: int = 0
    skipped_count: int = 0  # lines the parser could not read
    batch_id: str | None = None
    error_message: str | None = None


class FileStabilityError(Exception):
    """Raised when a file fails post-stability validation."""


# ── File stability & validation ──────────────────────────


def wait_for_stable(
    filepath: Path,
    stability_seconds: int = DEFAULT_STABILITY_SECONDS,
    check_interval: float = DEFAULT_CHECK_INTERVAL,
    max_wait: float = 300.0,
) -> None:
    """Wait until file size and mtime are stable for stability_seconds.

    Raises:
        TimeoutError: If file doesn't stabilize within max_wait.
    """
    prev_size = -1
    prev_mtime = -1.0
    stable_since: float | None = None
    start = time.monotonic()

    while True:
        if time.monotonic() - start > max_wait:
            raise TimeoutError(f"File did not stabilize within {max_wait}s: {filepath}")

        stat = filepath.stat()
        if stat.st_size == prev_size and stat.st_mtime == prev_mtime:
            if stable_since is None:
                stable_since = time.monotonic()
            elif time.monotonic() - stable_since >= stability_seconds:
                return
        else:
            stable_since = None

        prev_size = stat.st_size
        prev_mtime = stat.st_mtime
        time.sleep(check_interval)


def validate_file_completeness(filepath: Path) -> None:
    """Post-stability validation: ensure file content is complete.

    - CSV files: must end with a newline
    - OFX/QFX files: must contain closing </OFX> tag

    Raises:
        FileStabilityError: If file appears incomplete.
    """
    suffix = filepath.suffix.lower()

    if suffix == ".csv":
        with open(filepath, "rb") as f:
            f.seek(0, 2)
            size = f.tell()
            if size == 0:
                raise FileStabilityError(f"Empty CSV file: {filepath}")
            f.seek(size - 1)
            if f.read(1) not in (b"\n", b"\r"):
                raise FileStabilityError(f"CSV file does not end with newline: {filepath}")

    elif suffix in (".qfx", ".ofx"):
        content = filepath.read_bytes().upper()
        if b"</OFX>" not in content:
            raise FileStabilityError(f"OFX file missing closing </OFX> tag: {filepath}")


def parser_for(filepath: Path, kind: str | None = None) -> BaseParser:
    """Instantiate the parser for an explicit source kind or the file's extension.

    Raises:
        ValueError: If neither the kind nor the extension is supported.
    """
    if kind is not None:
        parser_cls = PARSERS_BY_KIND.get(kind)
    else:
        parser_cls = PARSERS_BY_EXTENSION.get(filepath.suffix.lower())
    if parser_cls is None:
        raise ValueError(f"No parser found for file: {filepath}")
    return parser_cls()


# ── Import pipeline ──────────────────────────────────────


class ImportPipeline:
    """Orchestrate: decode → parse → commit for one user's account.

    Args:
        service: LedgerService that owns the commit.
        user_id: Owner of every imported row.
        account_id: Account the dropped files belong to.
    """

    def __init__(self, service: LedgerService, user_id: str, account_id: str):
        self.service = service
        self.user_id = user_id
        self.account_id = account_id

    def process_file(self, filepath: Path, kind: str | None = None) -> ImportResult:
        """Run the import on a single file. Never raises.

        kind (csv, ofx or pdf) overrides the parser picked by extension.
        """
        filepath = Path(filepath)
        file_name = filepath.name

        if kind is None and filepath.suffix.lower() not in SUPPORTED_EXTENSIONS:
            return ImportResult(
                file_name=file_name,
                status="error",
                error_message=f"Unsupported file extension: {filepath.suffix}",
            )

        try:
            parser = parser_for(filepath, kind)
            rows = parser.parse_file(filepath)
            if parser.skipped_count > 0:
                logger.warning(
                    "Parser skipped %d line(s) in %s", parser.skipped_count, file_name,
                )

            payload = ImportPayload(
                source_type=parser.source_type,
                file_name=file_name,
                rows=rows,
                account_id=self.account_id,
                mapping=getattr(parser, "mapping_used", None) or None,
            )
            result = self.service.commit_import(self.user_id, payload)
        except LedgerError as e:
            logger.error("Import rejected for %s: %s", file_name, e)
            return ImportResult(file_name=file_name, status="error", error_message=str(e))
        except Exception as e:
            logger.exception("Import failed for %s", file_name)
            return ImportResult(file_name=file_name, status="error", error_message=str(e))

        status = "duplicate" if result.duplicate_file and not result.total_imported else "success"
        return ImportResult(
            file_name=file_name,
            status=status,
            imported_count=result.total_imported,
            duplicate_count=result.duplicates,
            invalid_count=result.invalid_rows,
            categorized_count=result.categorized,
            skipped_count=parser.skipped_count,
            batch_id=result.batch_id,
        )


# ── File watcher ─────────────────────────────────────────


class FileWatcher(FileSystemEventHandler):
    """Watch a drop folder for new statement files using PollingObserver.

    Processes files sequentially so commits for one user never overlap.

    Args:
        watch_dir: Directory to watch for new files.
        pipeline: ImportPipeline to process files.
        stability_seconds: Seconds of stability before processing.
        check_interval: Seconds between stability checks.
    """

    def __init__(
        self,
        watch_dir: Path,
        pipeline: ImportPipeline,
        stability_seconds: int = DEFAULT_STABILITY_SECONDS,
        check_interval: float = DEFAULT_CHECK_INTERVAL,
    ):
        self.watch_dir = Path(watch_dir)
        self.pipeline = pipeline
        self.stability_seconds = stability_seconds
        self.check_interval = check_interval
        self._observer = None

    def start(self) -> None:
        """Start watching the drop folder."""
        from watchdog.observers.polling import PollingObserver

        if not self.watch_dir.exists():
            self.watch_dir.mkdir(parents=True, exist_ok=True)

        self._observer = PollingObserver(timeout=DEFAULT_POLL_INTERVAL)
        self._observer.schedule(self, str(self.watch_dir), recursive=False)
        self._observer.start()
        logger.info("Watching %s for new statement files", self.watch_dir)

    def stop(self) -> None:
        """Stop watching."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join()
            self._observer = None
            logger.info("File watcher stopped")

    def on_created(self, event) -> None:
        if event.is_directory:
            return

        filepath = Path(event.src_path)
        if filepath.suffix.lower() not in SUPPORTED_EXTENSIONS:
            return

        logger.info("New file detected: %s", filepath.name)
        self._process_file(filepath)

    def _process_file(self, filepath: Path) -> ImportResult:
        """Wait for stability, validate, then import."""
        try:
            wait_for_stable(
                filepath,
                stability_seconds=self.stability_seconds,
                check_interval=self.check_interval,
            )
            validate_file_completeness(filepath)
        except (FileStabilityError, TimeoutError) as e:
            logger.error("File not ready: %s", e)
            return ImportResult(file_name=filepath.name, status="error", error_message=str(e))

        result = self.pipeline.process_file(filepath)
        logger.info(
            "Import result for %s: %s (imported=%d, dup=%d, invalid=%d)",
            filepath.name, result.status,
            result.imported_count, result.duplicate_count, result.invalid_count,
        )
        return result
