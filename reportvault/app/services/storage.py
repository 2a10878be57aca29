"""
Immutable report storage with integrity verification on every read.

Layout::

    <root>/<yyyy>/<mm>/<file_name>
    <root>/<yyyy>/<mm>/<file_name without .pdf>_metadata.json

Guarantees:
- Create-only writes. An existing artifact is never overwritten; storing
  the same name again is reported as "already stored".
  A sidecar missing next to an intact artifact is restored by that call.
- Atomic publication. Bytes are written to a hidden temporary file and
  published with a hard link, which fails if the target exists. Readers
  never observe a partially written artifact.
- Every read recomputes the SHA-256 checksum and compares it with the
  prefix encoded in the file name (and with the sidecar, when present).
  A mismatch raises :class:`IntegrityViolationError`, never a not-found.

This component exclusively owns the storage namespace.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from reportvault.app.errors import (
    ArtifactNotFoundError,
    IntegrityViolationError,
    StorageError,
)
from reportvault.app.schemas.artifacts import (
    StorageResult,
    StorageStats,
    StoredArtifactInfo,
)
from reportvault.app.services.signing import ReportSigner
from reportvault.app.utils.hashing import (
    REPORT_EXTENSION,
    calculate_checksum,
    extract_short_checksum,
    generate_file_name,
    parse_generated_at,
)


logger = logging.getLogger(__name__)

METADATA_SUFFIX = "_metadata.json"
_TEMP_PREFIX = ".incoming-"
_READ_ONLY = 0o444


def _metadata_path(pdf_path: Path) -> Path:
    stem = pdf_path.name[: -len(REPORT_EXTENSION)]
    return pdf_path.with_name(stem + METADATA_SUFFIX)


class ReportStorage:
    def __init__(
        self,
        *,
        root: Path,
        signer: ReportSigner,
        enabled: bool = True,
    ):
        self._root = Path(root)
        self._signer = signer
        self._enabled = enabled

    @property
    def root(self) -> Path:
        return self._root

    @property
    def enabled(self) -> bool:
        return self._enabled

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def store(
        self,
        pdf_bytes: bytes,
        cui: str,
        timestamp: datetime,
        checksum: str,
        version: str,
    ) -> str:
        """
        Persist a generated report and return its file name.

        Raises:
            StorageError:
                If ``checksum`` does not describe ``pdf_bytes`` or the
                write fails.
        """
        file_name = generate_file_name(
            cui=cui,
            timestamp=timestamp,
            version=version,
            checksum=checksum,
        )

        if not self._enabled:
            logger.info("PDF storage is disabled, skipping file save.")
            return file_name

        actual = calculate_checksum(pdf_bytes)
        if actual != checksum.lower():
            raise StorageError(
                f"Refusing to store {file_name}: supplied checksum does not "
                "match the report content"
            )

        target_dir = self._root / timestamp.strftime("%Y") / timestamp.strftime("%m")
        target = target_dir / file_name

        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            created = self._publish(target, pdf_bytes)
        except OSError as exc:
            logger.error("Failed to store PDF %s", target, exc_info=True)
            raise StorageError(f"Failed to store report {file_name}: {exc}") from exc

        if not created:
            logger.warning(
                "PDF file already exists, skipping write operation: %s", target
            )
            if not self._needs_metadata(target, actual):
                return file_name
            logger.info("Restoring missing metadata sidecar for: %s", target)

        try:
            self._write_metadata(
                target,
                cui=cui,
                timestamp=timestamp,
                checksum=actual,
                version=version,
                size=len(pdf_bytes),
            )
        except OSError as exc:
            raise StorageError(
                f"Failed to write metadata for report {file_name}: {exc}"
            ) from exc

        logger.info(
            "PDF stored successfully: %s (size: %s bytes)", target, len(pdf_bytes)
        )
        return file_name

    def _publish(self, target: Path, data: bytes) -> bool:
        """Atomically create ``target``; return False if it already exists."""
        if target.exists():
            return False

        fd, tmp_name = tempfile.mkstemp(prefix=_TEMP_PREFIX, dir=target.parent)
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as tmp:
                tmp.write(data)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.chmod(tmp_path, _READ_ONLY)

            try:
                os.link(tmp_path, target)
            except FileExistsError:
                return False
            return True
        finally:
            tmp_path.unlink(missing_ok=True)

    def _write_metadata(
        self,
        pdf_path: Path,
        *,
        cui: str,
        timestamp: datetime,
        checksum: str,
        version: str,
        size: int,
    ) -> None:
        metadata_path = _metadata_path(pdf_path)
        metadata = {
            "cui": cui,
            "generated_at": timestamp.replace(tzinfo=None).isoformat(),
            "version": version,
            "checksum_sha256": checksum,
            "file_size_bytes": size,
            "pdf_filename": pdf_path.name,
            "storage_path": str(pdf_path),
            "immutable": True,
        }

        try:
            with open(metadata_path, "x", encoding="utf-8") as f:
                json.dump(metadata, f, indent=2)
        except FileExistsError:
            return
        os.chmod(metadata_path, _READ_ONLY)
        logger.debug("Metadata written for: %s", metadata_path)

    def _needs_metadata(self, pdf_path: Path, checksum: str) -> bool:
        """True if an existing artifact with content ``checksum`` lacks its sidecar."""
        if _metadata_path(pdf_path).exists():
            return False
        try:
            existing = pdf_path.read_bytes()
        except OSError as exc:
            raise StorageError(
                f"Failed to read existing report {pdf_path.name}: {exc}"
            ) from exc
        return calculate_checksum(existing) == checksum

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    def retrieve_and_verify(self, file_name: str) -> StorageResult:
        """
        Read a stored report and prove it is unmodified.

        Raises:
            InvalidNameFormatError:
                If ``file_name`` does not follow the naming grammar.
            ArtifactNotFoundError:
                If no such report is stored.
            IntegrityViolationError:
                If the content no longer matches its checksum.
            StorageError:
                On I/O failure.
        """
        expected_short = extract_short_checksum(file_name)

        path = self._find(file_name)
        if path is None:
            raise ArtifactNotFoundError(file_name)

        try:
            pdf_bytes = path.read_bytes()
        except FileNotFoundError as exc:
            raise ArtifactNotFoundError(file_name) from exc
        except OSError as exc:
            logger.error("I/O error retrieving PDF: %s", file_name, exc_info=True)
            raise StorageError(f"Failed to read report {file_name}: {exc}") from exc

        actual = calculate_checksum(pdf_bytes)

        if not actual.startswith(expected_short):
            self._report_violation(file_name, expected_short, actual)

        recorded = self._recorded_checksum(path)
        if recorded is not None and recorded != actual:
            self._report_violation(file_name, recorded, actual)

        logger.info(
            "PDF integrity verified successfully for file: %s (checksum prefix: %s)",
            file_name,
            expected_short,
        )
        return StorageResult(
            full_path=str(path),
            file_name=file_name,
            checksum=actual,
            size=len(pdf_bytes),
            pdf_bytes=pdf_bytes,
        )

    def exists(self, file_name: str) -> bool:
        if not self._enabled:
            return False
        return self._find(file_name) is not None

    def list_for_subject(self, cui: str) -> List[StoredArtifactInfo]:
        """Stored reports for ``cui``, newest first."""
        if not self._enabled or not self._root.exists():
            return []

        prefix = f"{cui}_"
        infos: List[StoredArtifactInfo] = []

        for path in self._iter_reports():
            if not path.name.startswith(prefix):
                continue
            try:
                stat = path.stat()
            except OSError:
                logger.error("Could not read file info for: %s", path, exc_info=True)
                continue

            generated_at = parse_generated_at(path.name) or datetime.fromtimestamp(
                stat.st_mtime
            )
            infos.append(
                StoredArtifactInfo(
                    file_name=path.name,
                    size=stat.st_size,
                    generated_at=generated_at,
                )
            )

        infos.sort(key=lambda info: (info.generated_at, info.file_name), reverse=True)
        return infos

    def stats(self) -> StorageStats:
        if not self._enabled:
            return StorageStats(file_count=0, total_size=0, enabled=False)

        count = 0
        total = 0
        for path in self._iter_reports():
            try:
                total += path.stat().st_size
            except OSError:
                continue
            count += 1

        return StorageStats(file_count=count, total_size=total, enabled=True)

    # ------------------------------------------------------------------
    # Signature primitives
    # ------------------------------------------------------------------

    def sign(self, data: bytes) -> str:
        return self._signer.sign(data)

    def verify_signature(self, data: bytes, signature: str) -> bool:
        return self._signer.verify_signature(data, signature)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _iter_reports(self):
        if not self._root.exists():
            return
        for dirpath, _dirnames, filenames in os.walk(self._root):
            for name in filenames:
                if name.endswith(REPORT_EXTENSION) and not name.startswith(_TEMP_PREFIX):
                    yield Path(dirpath) / name

    def _find(self, file_name: str) -> Optional[Path]:
        for path in self._iter_reports():
            if path.name == file_name:
                return path
        return None

    def _recorded_checksum(self, pdf_path: Path) -> Optional[str]:
        metadata_path = _metadata_path(pdf_path)
        try:
            metadata = json.loads(metadata_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError):
            logger.warning("Unreadable metadata sidecar: %s", metadata_path)
            return None

        if not isinstance(metadata, dict):
            logger.warning("Metadata sidecar is not a JSON object: %s", metadata_path)
            return None

        recorded = metadata.get("checksum_sha256")
        return recorded.lower() if isinstance(recorded, str) else None

    def _report_violation(self, file_name: str, expected: str, actual: str) -> None:
        logger.error(
            "INTEGRITY VIOLATION: File %s may have been tampered with! "
            "Expected checksum: %s, but actual checksum is: %s",
            file_name,
            expected,
            actual,
            extra={
                "event": "integrity_violation",
                "file_name": file_name,
                "expected_checksum": expected,
                "actual_checksum": actual,
            },
        )
        raise IntegrityViolationError(file_name, expected, actual)
