import unittest

import pytest

from junban.core.models import Recurrence, Task


class TestRecurrenceFromDict(unittest.TestCase):
    def test_camel_case_keys(self) -> None:
        """camelCase のキーも読めることを確認"""
        r = Recurrence.from_dict({"type": "rolling", "intervalDays": "7", "leadTimeDays": 1.5})
        assert r is not None
        assert r.interval_days == 7
        assert r.lead_time_days == 1.5
        assert r.interval == 7.0

    def test_none_type_is_no_recurrence(self) -> None:
        """type none や未知の type は recurrence 無しになることを確認"""
        assert Recurrence.from_dict({"type": "none"}) is None
        assert Recurrence.from_dict({"type": "monthly"}) is None

    def test_weekdays_normalized(self) -> None:
        """曜日が先頭 7 個に絞られ数値以外が捨てられることを確認"""
        r = Recurrence.from_dict({"type": "anchored", "weekdays": [1, "3", "x", 9, 0, 2, 4, 5, 6]})
        assert r is not None
        # 先頭7個だけ、数値にならないものは捨てる
        assert r.weekdays == [1, 3, 9, 0, 2, 4]
        assert r.weekday_set() == {0, 1, 2, 3, 4}

    def test_invalid_interval(self) -> None:
        """数値でない interval は未設定扱いになることを確認"""
        r = Recurrence.from_dict({"type": "rolling", "interval_days": "abc"})
        assert r is not None
        assert r.interval_days is None
        assert r.interval == 0.0


class TestTaskFromDict(unittest.TestCase):
    def test_missing_id_raises(self) -> None:
        """id の無いタスクはエラーになることを確認"""
        with pytest.raises(ValueError, match="Task without id"):
            Task.from_dict({"title": "x"})

    def test_defaults_and_unknown_keys(self) -> None:
        """欠けた項目や不正な state に既定値が入ることを確認"""
        t = Task.from_dict({"id": "a", "unknown": 1, "state": "Bogus"})
        assert t.id == "a"
        assert t.title == "Untitled Task"
        assert t.state == "Ready"
        assert t.priority == 1
        assert t.dependencies == []

    def test_nested_recurrence_and_deps(self) -> None:
        """recurrence と依存が読まれることを確認"""
        t = Task.from_dict({"id": "a", "dependencies": [1, "b"], "recurrence": {"type": "rolling", "interval": 3}})
        assert t.dependencies == ["1", "b"]
        assert isinstance(t.recurrence, Recurrence)
        assert t.recurrence.interval == 3.0

    def test_to_dict_round_trip(self) -> None:
        """to_dict から復元して同じタスクになることを確認"""
        t = Task(id="a", title="A", recurrence=Recurrence(type="anchored", weekdays=[1]))
        again = Task.from_dict(t.to_dict())
        assert again == t


if __name__ == "__main__":
    unittest.main()
