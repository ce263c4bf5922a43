import io
import os
import unittest
from unittest.mock import patch

from torrent_unpacker.unpacker.formats import RarFormat, SevenZipFormat, ZipFormat, get_formats
from torrent_unpacker.utils import ToolFailedError


class TestRarFormat(unittest.TestCase):
    def setUp(self):
        self.rar = RarFormat()

    def test_volumes_share_a_container(self):
        keys = {self.rar.container_for(os.path.join("d", n)) for n in ("a.rar", "a.r00", "a.r17", "a.001")}
        self.assertEqual(keys, {os.path.join("d", "a")})
        self.assertEqual(self.rar.container_for(os.path.join("d", "a.part07.rar")), os.path.join("d", "a"))
        self.assertIsNone(self.rar.container_for("a.txt"))

    def test_select_source_prefers_rar(self):
        self.assertEqual(self.rar.select_source(["a.r01", "a.rar", "a.r00"]), "a.rar")
        self.assertEqual(self.rar.select_source(["a.002", "a.001"]), "a.001")

    def test_command(self):
        command = self.rar.build_command("/dl/a.rar", "/out/A")
        self.assertEqual(command, ["unrar", "x", "-ai", "-c-", "-kb", "-o+", "-p-", "-y", "-v", "/dl/a.rar", "/out/A" + os.sep])

    @patch('torrent_unpacker.unpacker.formats.run_tool', return_value=10)
    def test_exit_code_ten_is_success(self, mock_run):
        sink = io.StringIO()
        self.rar.extract("/dl/a.rar", "/out/A", sink)
        mock_run.assert_called_once()
        self.assertIn("--- rar: unrar x", sink.getvalue())

    @patch('torrent_unpacker.unpacker.formats.run_tool', return_value=3)
    def test_other_exit_codes_fail(self, mock_run):
        with self.assertRaises(ToolFailedError) as ctx:
            self.rar.extract("/dl/a.rar", "/out/A", io.StringIO())
        self.assertEqual(ctx.exception.returncode, 3)


class TestOtherFormats(unittest.TestCase):
    def test_zip_command(self):
        self.assertEqual(ZipFormat().build_command("/dl/a.zip", "/out/A"), ["unzip", "-o", "/dl/a.zip", "-d", "/out/A"])

    def test_seven_zip_command(self):
        self.assertEqual(SevenZipFormat().build_command("/dl/a.7z", "/out/A"), ["7z", "x", "-y", "-o/out/A", "/dl/a.7z"])

    @patch('torrent_unpacker.unpacker.formats.run_tool', return_value=10)
    def test_zip_only_accepts_zero(self, mock_run):
        with self.assertRaises(ToolFailedError):
            ZipFormat().extract("/dl/a.zip", "/out/A", io.StringIO())

    def test_priority_order(self):
        self.assertEqual([f.name for f in get_formats()], ["rar", "zip", "7z"])


if __name__ == '__main__':
    unittest.main()
