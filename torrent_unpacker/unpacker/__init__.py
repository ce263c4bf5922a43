from .archive_scanner import ArchiveScanner, Target
from .formats import ArchiveFormat, RarFormat, SevenZipFormat, ZipFormat, available_formats, get_formats
from .process_runner import run_tool, stop_all_processes

__all__ = [
    'ArchiveScanner', 'Target', 'ArchiveFormat', 'RarFormat', 'SevenZipFormat',
    'ZipFormat', 'available_formats', 'get_formats', 'run_tool', 'stop_all_processes',
]
