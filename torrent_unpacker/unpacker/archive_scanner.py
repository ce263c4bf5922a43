"""Finds extractable archives below a path and extracts them.

Classes:
    Target: One extraction unit (a single archive or a multi-volume set).
    ArchiveScanner: Identifies files against the known formats and collects
        deduplicated targets for a path.
"""
import logging
import os
import threading
from dataclasses import dataclass, field
from typing import IO, Dict, Iterator, List, Mapping, Optional, Sequence

from .formats import ArchiveFormat, available_formats
from ..utils import NoExtractorsError, OperationCancelled, ScanError


@dataclass
class Target:
    """A concrete archive, or archive set, that is extracted as one unit.

    Attributes:
        archive_format: The format that recognised the archive.
        container: The deduplication key of the unit.
        members: Every file found for the unit, e.g. all volumes of a RAR set.
        extra_env: Environment passed to the extraction tool.
    """
    archive_format: ArchiveFormat
    container: str
    members: List[str] = field(default_factory=list)
    extra_env: Mapping[str, str] = field(default_factory=dict)

    @property
    def source(self) -> str:
        return self.archive_format.select_source(self.members)

    def extract(self, destination: str, log_sink: IO, stop_event: Optional[threading.Event] = None) -> None:
        self.archive_format.extract(self.source, destination, log_sink, stop_event, self.extra_env)

    def __str__(self) -> str:
        return self.source


class ArchiveScanner:
    """Scans paths for archives that one of the configured formats can extract."""

    def __init__(self, formats: Optional[Sequence[ArchiveFormat]] = None, temp_path: Optional[str] = None):
        """Initializes the scanner.

        Args:
            formats: The formats to recognise, in priority order. Defaults to
                every supported format whose tool is installed.
            temp_path: Exported as TMPDIR to extraction tools when set.

        Raises:
            NoExtractorsError: If no format is available.
        """
        self.formats: List[ArchiveFormat] = list(formats) if formats is not None else available_formats()
        if not self.formats:
            raise NoExtractorsError("No extraction tools (unrar, unzip, 7z) found in PATH")
        self.extra_env: Dict[str, str] = {'TMPDIR': temp_path} if temp_path else {}
        logging.info(f"UNPACKER: Enabled formats: {', '.join(f.name for f in self.formats)}")

    def identify(self, path: str) -> Optional[Target]:
        """Returns a single-member target for `path`, or None if no format claims it."""
        for archive_format in self.formats:
            container = archive_format.container_for(path)
            if container is not None:
                return Target(archive_format, container, [path], self.extra_env)
        return None

    @staticmethod
    def _iter_files(path: str) -> Iterator[str]:
        if not os.path.isdir(path):
            os.stat(path)
            yield path
            return
        with os.scandir(path) as entries:
            children = sorted(entries, key=lambda e: e.name)
        for entry in children:
            if entry.is_dir(follow_symlinks=False):
                yield from ArchiveScanner._iter_files(entry.path)
            else:
                yield entry.path

    def scan(self, path: str, stop_event: Optional[threading.Event] = None) -> List[Target]:
        """Recursively collects the extraction targets below `path`.

        Files belonging to the same unit collapse to one target. A path that
        is a file is checked on its own.

        Raises:
            ScanError: If the path, or a directory below it, cannot be read.
            OperationCancelled: If `stop_event` is set during the scan.
        """
        targets: Dict[str, Target] = {}
        try:
            for file_path in self._iter_files(path):
                if stop_event is not None and stop_event.is_set():
                    raise OperationCancelled(f"Scan of '{path}' interrupted by shutdown")
                found = self.identify(file_path)
                if found is None:
                    continue
                existing = targets.get(found.container)
                if existing is None:
                    targets[found.container] = found
                else:
                    existing.members.append(file_path)
        except OSError as e:
            raise ScanError(f"Cannot scan '{path}': {e}") from e
        return list(targets.values())
