import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from junban.util import dirs


class TestGetUsername(unittest.TestCase):
    def test_uses_os_env_first(self) -> None:
        """OS 環境変数のユーザー名が優先されることを確認"""
        with mock.patch.dict(os.environ, {"JB_USERNAME": "env_user"}):
            assert dirs.get_username({"USERNAME": "file_user"}) == "env_user"

    def test_falls_back_to_env_file(self) -> None:
        """env ファイルのユーザー名が使われることを確認"""
        with mock.patch.dict(os.environ, {}, clear=True):
            assert dirs.get_username({"USERNAME": "file_user"}) == "file_user"

    def test_anonymous(self) -> None:
        """どこにも無ければ anonymous になることを確認"""
        with mock.patch.dict(os.environ, {}, clear=True):
            assert dirs.get_username({}) == "anonymous"
            assert dirs.get_username({"USERNAME": ""}) == "anonymous"


class TestReadEnvFile(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.path = Path(self.tmpdir.name) / "config.env"

    def tearDown(self) -> None:
        self.tmpdir.cleanup()

    def test_missing_file(self) -> None:
        """env ファイルが無ければ空になることを確認"""
        assert dirs.read_env_file(self.path.as_posix()) == {}

    def test_parses_key_value_lines(self) -> None:
        """KEY=VALUE 行だけが読まれることを確認"""
        self.path.write_text("# comment\n\nDATA_PATH = /tmp/x.yaml\nPORT=9000\nbroken line\n", encoding="utf-8")
        env = dirs.read_env_file(self.path.as_posix())
        assert env == {"DATA_PATH": "/tmp/x.yaml", "PORT": "9000"}


class TestLoadEnv(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.path = Path(self.tmpdir.name) / "config.env"
        self.path.write_text("PORT=9000\nSCORE_DECAY=0.25\nUSERNAME=bob\n", encoding="utf-8")

    def tearDown(self) -> None:
        self.tmpdir.cleanup()

    def test_defaults_filled(self) -> None:
        """未設定のキーに既定値が入ることを確認"""
        with mock.patch.dict(os.environ, {}, clear=True):
            env = dirs.load_env(self.path.as_posix())
        assert env["DATA_PATH"] == dirs.DEFAULT_TASKS_PATH
        assert env["RECOMPUTE_INTERVAL_SECONDS"] == "600"
        assert env["SCORE_DECAY"] == "0.25"
        assert env["PORT"] == "9000"
        assert env["USERNAME"] == "bob"

    def test_os_env_overrides_file(self) -> None:
        """JB_ 付きの環境変数がファイルより優先されることを確認"""
        with mock.patch.dict(os.environ, {"JB_PORT": "7000", "JB_USERNAME": "carol"}, clear=True):
            env = dirs.load_env(self.path.as_posix())
        assert env["PORT"] == "7000"
        assert env["USERNAME"] == "carol"


if __name__ == "__main__":
    unittest.main()
