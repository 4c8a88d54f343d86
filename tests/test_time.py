import os
import re
import tempfile
import unittest
from datetime import datetime, timedelta
from pathlib import Path
from unittest import mock

from junban.core.models import Task
from junban.util.dirs import load_env
from junban.util.time import (
    LOCAL_TZ,
    UTC,
    days_between,
    format_due_status,
    js_weekday,
    load_timezone,
    now_iso,
    parse_datetime,
    to_iso,
)

AT = datetime(2025, 1, 15, 9, 0, tzinfo=LOCAL_TZ)


class TestNowIso(unittest.TestCase):
    def test_format(self) -> None:
        """ISO 形式のオフセット付き文字列であることを確認"""
        out = now_iso()
        # YYYY-MM-DDTHH:MM:SS+HH:MM
        assert re.fullmatch(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}[+-]\d{2}:\d{2}", out)


class TestLoadTimezone(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.env_path = (Path(self.tmpdir.name) / "config.env").as_posix()
        self.env_patch = mock.patch.dict(os.environ)
        self.env_patch.start()
        os.environ.pop("JB_TIMEZONE", None)

    def tearDown(self) -> None:
        self.env_patch.stop()
        self.tmpdir.cleanup()

    def test_config_env_timezone(self) -> None:
        """config.env の TIMEZONE が使われることを確認"""
        Path(self.env_path).write_text("TIMEZONE=UTC\n", encoding="utf-8")
        assert load_timezone(load_env(self.env_path)).key == "UTC"

    def test_env_var_overrides_config_env(self) -> None:
        """JB_TIMEZONE が config.env より優先されることを確認"""
        Path(self.env_path).write_text("TIMEZONE=UTC\n", encoding="utf-8")
        os.environ["JB_TIMEZONE"] = "Europe/Berlin"
        assert load_timezone(load_env(self.env_path)).key == "Europe/Berlin"

    def test_default_and_unknown_name(self) -> None:
        """未設定や解決できない名前では Asia/Tokyo になることを確認"""
        assert load_timezone(load_env(self.env_path)).key == "Asia/Tokyo"
        assert load_timezone({"TIMEZONE": "Mars/Olympus"}).key == "Asia/Tokyo"


class TestParseDatetime(unittest.TestCase):
    def test_naive_string_is_local(self) -> None:
        """タイムゾーン無しの文字列がローカル時刻になることを確認"""
        dt = parse_datetime("2025-01-15T09:00:00")
        assert dt == AT

    def test_offset_string_is_kept(self) -> None:
        """オフセット付きの文字列はそのまま読まれることを確認"""
        dt = parse_datetime("2025-01-15T00:00:00+00:00")
        assert dt is not None
        assert dt == datetime(2025, 1, 15, tzinfo=UTC)

    def test_invalid(self) -> None:
        """解釈できない文字列が None になることを確認"""
        assert parse_datetime("not-a-date") is None
        assert parse_datetime("") is None
        assert parse_datetime(None) is None
        assert parse_datetime(12345) is None

    def test_round_trip_with_to_iso(self) -> None:
        """to_iso で書いた文字列を読み直せることを確認"""
        assert parse_datetime(to_iso(AT)) == AT


class TestHelpers(unittest.TestCase):
    def test_days_between(self) -> None:
        """日数の差を小数で返すことを確認"""
        assert days_between(AT, AT + timedelta(hours=36)) == 1.5

    def test_js_weekday_sunday_is_zero(self) -> None:
        """日曜日が 0 になることを確認"""
        assert js_weekday(datetime(2025, 1, 19, tzinfo=LOCAL_TZ)) == 0
        assert js_weekday(datetime(2025, 1, 15, tzinfo=LOCAL_TZ)) == 3


class TestFormatDueStatus(unittest.TestCase):
    def test_no_dates(self) -> None:
        """日付が無ければ空文字列になることを確認"""
        r = format_due_status(Task(id="t1"), at=AT)
        assert r.is_ok()
        assert r.unwrap() == ""

    def test_due_and_deadline(self) -> None:
        """予定日と締め切りの残り時間を表示することを確認"""
        t = Task(
            id="t1",
            scheduled_due_at=to_iso(AT + timedelta(days=3, hours=4)),
            deadline=to_iso(AT - timedelta(days=1, hours=2)),
        )
        r = format_due_status(t, at=AT)
        assert r.is_ok()
        assert r.unwrap() == "due:+3d4h deadline:-1d2h"

    def test_parse_error(self) -> None:
        """不正な日付がエラーになることを確認"""
        t = Task(id="t1", deadline="invalid")
        r = format_due_status(t, at=AT)
        assert r.is_err()
        assert "???" in r.unwrap_err()


if __name__ == "__main__":
    unittest.main()
