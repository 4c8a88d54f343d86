import json
import tempfile
import unittest
from pathlib import Path

import pytest

from junban.core.models import Recurrence, Task
from junban.io.json_io import export_json, import_json


class TestJsonIO(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.path = Path(self.tmpdir.name) / "export.json"

    def tearDown(self) -> None:
        self.tmpdir.cleanup()

    def test_export_then_import(self) -> None:
        """書き出したファイルを読み込めることを確認"""
        tasks = {
            "a": Task(id="a", title="タスクA"),
            "b": Task(id="b", dependencies=["a"], recurrence=Recurrence(type="rolling", interval_days=7)),
        }
        export_json(tasks, self.path.as_posix())
        assert "タスクA" in self.path.read_text(encoding="utf-8")
        assert import_json(self.path.as_posix()) == tasks

    def test_export_refuses_to_overwrite(self) -> None:
        """既存ファイルを上書きしないことを確認"""
        self.path.write_text("[]", encoding="utf-8")
        with pytest.raises(FileExistsError):
            export_json({}, self.path.as_posix())

    def test_import_mapping_format(self) -> None:
        """ID をキーにした形式も読み込めることを確認"""
        self.path.write_text(json.dumps({"a": {"title": "A"}}), encoding="utf-8")
        tasks = import_json(self.path.as_posix())
        assert tasks["a"].title == "A"

    def test_import_errors(self) -> None:
        """不正なファイルがエラーになることを確認"""
        with pytest.raises(FileNotFoundError):
            import_json(self.path.as_posix())
        self.path.write_text(json.dumps([{"id": "a"}, {"id": "a"}]), encoding="utf-8")
        with pytest.raises(ValueError, match="Duplicate"):
            import_json(self.path.as_posix())
        self.path.write_text('"text"', encoding="utf-8")
        with pytest.raises(ValueError, match="Unexpected"):
            import_json(self.path.as_posix())


if __name__ == "__main__":
    unittest.main()
