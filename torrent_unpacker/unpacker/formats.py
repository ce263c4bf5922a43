"""Archive formats the unpacker recognises and the tools that extract them.

Each format knows three things: which file names belong to it, how several
files collapse into one extraction unit (a multi-volume RAR set is extracted
once, from its first volume), and how to invoke its external tool.
"""
import abc
import logging
import os
import re
import shutil
import threading
from typing import IO, FrozenSet, List, Mapping, Optional

from .process_runner import run_tool
from ..utils import ToolFailedError


class ArchiveFormat(abc.ABC):
    """Base class for an archive format handled by an external tool."""

    name: str = ""
    command: str = ""
    pattern: "re.Pattern[str]" = re.compile(r'(?!)')
    success_codes: FrozenSet[int] = frozenset({0})

    def installed(self) -> bool:
        return shutil.which(self.command) is not None

    def matches(self, path: str) -> bool:
        return self.pattern.search(os.path.basename(path)) is not None

    def container_for(self, path: str) -> Optional[str]:
        """Returns the key of the extraction unit `path` belongs to, or None."""
        if not self.matches(path):
            return None
        return path

    def select_source(self, members: List[str]) -> str:
        """Picks the file handed to the tool from the members of one unit."""
        return sorted(members)[0]

    @abc.abstractmethod
    def build_command(self, source: str, destination: str) -> List[str]:
        pass

    def extract(
        self,
        source: str,
        destination: str,
        log_sink: IO,
        stop_event: Optional[threading.Event] = None,
        extra_env: Optional[Mapping[str, str]] = None,
    ) -> None:
        """Extracts `source` into `destination`, writing tool output to `log_sink`.

        Raises:
            ToolMissingError: The tool could not be started.
            ToolFailedError: The tool exited with a code outside `success_codes`.
            OperationCancelled: `stop_event` was set while the tool ran.
        """
        command = self.build_command(source, destination)
        log_sink.write(f"--- {self.name}: {' '.join(command)}\n")
        logging.debug(f"UNPACKER: Running {command}")
        returncode = run_tool(command, log_sink, stop_event, extra_env)
        if returncode not in self.success_codes:
            raise ToolFailedError(
                f"{self.command} exited with code {returncode} for '{source}'", returncode
            )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


class RarFormat(ArchiveFormat):
    name = "rar"
    command = "unrar"
    pattern = re.compile(r'\.(rar|r\d\d|\d\d\d)$', re.IGNORECASE)
    # unrar exits with 10 when there was nothing left to extract
    success_codes = frozenset({0, 10})

    _volume = re.compile(r'^(?P<base>.+?)(\.part\d+)?\.(rar|r\d\d|\d\d\d)$', re.IGNORECASE)

    def container_for(self, path: str) -> Optional[str]:
        if not self.matches(path):
            return None
        directory, file_name = os.path.split(path)
        match = self._volume.match(file_name)
        base = match.group('base') if match else file_name
        return os.path.join(directory, base)

    def select_source(self, members: List[str]) -> str:
        rar_files = sorted(m for m in members if m.lower().endswith('.rar'))
        if rar_files:
            return rar_files[0]
        return sorted(members)[0]

    def build_command(self, source: str, destination: str) -> List[str]:
        # unrar treats the destination as a directory only with a trailing separator
        destination = os.path.join(destination, '')
        return [self.command, 'x', '-ai', '-c-', '-kb', '-o+', '-p-', '-y', '-v', source, destination]


class ZipFormat(ArchiveFormat):
    name = "zip"
    command = "unzip"
    pattern = re.compile(r'\.zip$', re.IGNORECASE)

    def build_command(self, source: str, destination: str) -> List[str]:
        return [self.command, '-o', source, '-d', destination]


class SevenZipFormat(ArchiveFormat):
    name = "7z"
    command = "7z"
    pattern = re.compile(r'\.7z$', re.IGNORECASE)

    def build_command(self, source: str, destination: str) -> List[str]:
        return [self.command, 'x', '-y', f'-o{destination}', source]


def get_formats() -> List[ArchiveFormat]:
    """Returns every supported format in matching priority order."""
    return [RarFormat(), ZipFormat(), SevenZipFormat()]


def available_formats() -> List[ArchiveFormat]:
    """Returns the supported formats whose tool is found on PATH."""
    formats = []
    for archive_format in get_formats():
        if archive_format.installed():
            formats.append(archive_format)
        else:
            logging.warning(f"UNPACKER: '{archive_format.command}' not found in PATH, {archive_format.name} archives are ignored.")
    return formats
