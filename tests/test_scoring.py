import unittest
from datetime import datetime, timedelta

from junban.core.models import Recurrence, Task
from junban.core.scoring import (
    ScoringConfig,
    compute_priorities,
    compute_urgency,
    percentile_ranker,
    propagate_importance,
    recompute_all,
    round_half_up,
)
from junban.util.time import LOCAL_TZ, to_iso

NOW = datetime(2025, 1, 15, 9, 0, tzinfo=LOCAL_TZ)
CFG = ScoringConfig()


def _iso(**delta: float) -> str:
    return to_iso(NOW + timedelta(**delta))


class TestRounding(unittest.TestCase):
    def test_half_up(self) -> None:
        """0.5 が切り上げられることを確認"""
        assert round_half_up(0.5) == 1
        assert round_half_up(2.5) == 3
        assert round_half_up(2.4999) == 2


class TestUrgency(unittest.TestCase):
    def test_deadline_ramp(self) -> None:
        """締め切りまでの日数で urgency が上がることを確認"""
        t = Task(id="a", deadline=_iso(days=5))
        # 100 * (1 - 5/30) = 83.3
        assert compute_urgency(t, NOW, CFG) == 83

    def test_deadline_passed_or_far(self) -> None:
        """締め切り超過で 100、遠ければ 0 になることを確認"""
        assert compute_urgency(Task(id="a", deadline=_iso(hours=-1)), NOW, CFG) == 100
        assert compute_urgency(Task(id="a", deadline=_iso(days=31)), NOW, CFG) == 0

    def test_deadline_takes_precedence_over_due(self) -> None:
        """締め切りが予定日より優先されることを確認"""
        t = Task(id="a", deadline=_iso(days=30), scheduled_due_at=_iso(days=-1))
        assert compute_urgency(t, NOW, CFG) == 0

    def test_rolling_uses_interval_as_window(self) -> None:
        """rolling は interval を期間に使うことを確認"""
        t = Task(id="a", scheduled_due_at=_iso(days=2), recurrence=Recurrence(type="rolling", interval_days=4))
        assert compute_urgency(t, NOW, CFG) == 50

    def test_due_without_recurrence_uses_window(self) -> None:
        """繰り返し無しの予定日は既定の期間を使うことを確認"""
        t = Task(id="a", scheduled_due_at=_iso(days=15))
        assert compute_urgency(t, NOW, CFG) == 50

    def test_nothing_or_invalid(self) -> None:
        """日付が無いか不正なら 0 になることを確認"""
        assert compute_urgency(Task(id="a"), NOW, CFG) == 0
        assert compute_urgency(Task(id="a", deadline="garbage"), NOW, CFG) == 0


class TestImportance(unittest.TestCase):
    def test_chain_propagates_with_decay(self) -> None:
        """重要度が減衰しながら依存先に伝わることを確認"""
        tasks = {
            "a": Task(id="a"),
            "b": Task(id="b", dependencies=["a"]),
            "c": Task(id="c", dependencies=["b"]),
        }
        raw, deadlock = propagate_importance(tasks, 0.5)
        assert deadlock == set()
        assert raw == {"a": 1.5, "b": 1.0, "c": 0.0}

    def test_three_cycle_is_zero(self) -> None:
        """循環しているタスクの重要度が 0 になることを確認"""
        tasks = {
            "x": Task(id="x", dependencies=["z"]),
            "y": Task(id="y", dependencies=["x"]),
            "z": Task(id="z", dependencies=["y"]),
        }
        raw, deadlock = propagate_importance(tasks, 0.5)
        assert deadlock == {"x", "y", "z"}
        assert set(raw.values()) == {0.0}

    def test_percentile(self) -> None:
        """パーセンタイルの値を確認"""
        rank = percentile_ranker([0.0, 0.0, 1.0, 2.5])
        assert rank(0.0) == 0
        assert rank(1.0) == 67
        assert rank(2.5) == 100
        assert percentile_ranker([3.0])(3.0) == 0

    def test_percentile_monotonic(self) -> None:
        """パーセンタイルが単調で 0 から 100 に収まることを確認"""
        values = [0.0, 2.0, 0.5, 2.0, 7.25, 1.0, 0.0, 3.5]
        rank = percentile_ranker(values)
        ranks = [rank(v) for v in sorted(values)]
        assert ranks == sorted(ranks)
        assert all(0 <= r <= 100 for r in ranks)


class TestPriorities(unittest.TestCase):
    def test_bounds_and_monotonic(self) -> None:
        """priority が 1 から 100 に収まることを確認"""
        tasks = {
            "root": Task(id="root", deadline=_iso(days=-1)),
            "mid": Task(id="mid", dependencies=["root"]),
            "leaf": Task(id="leaf", dependencies=["mid"]),
            "lone": Task(id="lone"),
        }
        scores = compute_priorities(tasks, NOW, CFG)
        for s in scores.values():
            assert 1 <= s.priority <= 100
        assert scores["root"].importance_percentile > scores["mid"].importance_percentile
        # 0.4 * 100 + 0.6 * 100 + 1 -> clamp
        assert scores["root"].priority == 100
        assert scores["lone"].priority == 1

    def test_deadlock_flag(self) -> None:
        """循環しているタスクに deadlock が付くことを確認"""
        tasks = {"x": Task(id="x", dependencies=["y"]), "y": Task(id="y", dependencies=["x"])}
        scores = compute_priorities(tasks, NOW, CFG)
        assert scores["x"].deadlock
        assert scores["x"].importance_raw == 0

    def test_recompute_all_writes_back_and_reports(self) -> None:
        """再計算の結果が書き戻され変更が返ることを確認"""
        tasks = {"a": Task(id="a", deadline=_iso(days=5))}
        changes = recompute_all(tasks, NOW, CFG)
        # round(0.4 * 83 + 0) + 1 = 34
        assert tasks["a"].urgency == 83
        assert tasks["a"].priority == 34
        assert changes == [
            {
                "id": "a",
                "before": {"priority": 1, "urgency": 0, "importance_percentile": 0},
                "after": {"priority": 34, "urgency": 83, "importance_percentile": 0},
            },
        ]
        assert recompute_all(tasks, NOW, CFG) == []


if __name__ == "__main__":
    unittest.main()
