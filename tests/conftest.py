import logging
import zipfile

import pytest

from torrent_unpacker.config_manager import Categories, DaemonConfig
from torrent_unpacker.unpacker.archive_scanner import ArchiveScanner

from tests.mocks.mock_qbittorrent import FakeTorrentClient
from tests.mocks.mock_unpacker import FailingFormat, PythonZipFormat, SleepingFormat


@pytest.fixture
def categories():
    return Categories()


@pytest.fixture
def fake_client():
    return FakeTorrentClient()


@pytest.fixture
def scanner():
    return ArchiveScanner(formats=[PythonZipFormat(), FailingFormat(), SleepingFormat()])


@pytest.fixture
def daemon_config(tmp_path):
    destination = tmp_path / "unpacked"
    destination.mkdir()
    return DaemonConfig(
        destination_path=str(destination),
        poll_timeout=1.0,
        poll_delay=0.2,
        unpack_workers=1,
        check_workers=1,
    )


@pytest.fixture
def make_zip(tmp_path):
    """Creates a zip archive below tmp_path/downloads and returns its path."""
    def _make_zip(relative_path, members=None):
        archive = tmp_path / "downloads" / relative_path
        archive.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(archive, 'w') as zf:
            for name, content in (members or {"hello.txt": "hello"}).items():
                zf.writestr(name, content)
        return archive
    return _make_zip


@pytest.fixture(autouse=True)
def _restore_root_logger():
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in saved_handlers:
            handler.close()
    root.handlers[:] = saved_handlers
    root.setLevel(saved_level)
