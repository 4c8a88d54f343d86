import threading
import time
import unittest

import pytest

from junban.core.errors import ValidationError
from junban.core.serializer import MutationSerializer


class TestMutationSerializer(unittest.TestCase):
    def setUp(self) -> None:
        self.serializer = MutationSerializer(name="test-serializer")

    def tearDown(self) -> None:
        self.serializer.close()

    def test_runs_in_submission_order(self) -> None:
        """積んだ順に実行されることを確認"""
        seen: list[int] = []
        gate = threading.Event()
        self.serializer.submit(gate.wait)
        futures = [self.serializer.submit(lambda i=i: seen.append(i)) for i in range(20)]
        gate.set()
        for f in futures:
            f.result(timeout=5)
        assert seen == list(range(20))

    def test_units_do_not_overlap(self) -> None:
        """unit が並行に実行されないことを確認"""
        active = 0
        peak = 0
        lock = threading.Lock()

        def unit() -> None:
            nonlocal active, peak
            with lock:
                active += 1
                peak = max(peak, active)
            time.sleep(0.005)
            with lock:
                active -= 1

        threads = [threading.Thread(target=self.serializer.run, args=(unit,)) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)
        assert peak == 1

    def test_failure_does_not_stall_queue(self) -> None:
        """失敗した unit の後も処理が続くことを確認"""
        def bad() -> None:
            _msg = "rejected"
            raise ValidationError(_msg)

        def crash() -> None:
            _msg = "boom"
            raise RuntimeError(_msg)

        f1 = self.serializer.submit(bad)
        f2 = self.serializer.submit(crash)
        f3 = self.serializer.submit(lambda: "ok")
        assert f3.result(timeout=5) == "ok"
        with pytest.raises(ValidationError):
            f1.result(timeout=5)
        with pytest.raises(RuntimeError, match="boom"):
            f2.result(timeout=5)

    def test_run_returns_result(self) -> None:
        """run が結果を返すことを確認"""
        assert self.serializer.run(lambda: 42) == 42

    def test_run_from_inside_a_unit_is_rejected(self) -> None:
        """unit の中から run を呼ぶとエラーになることを確認"""
        f = self.serializer.submit(lambda: self.serializer.run(lambda: 1))
        with pytest.raises(RuntimeError, match="inside a queued unit"):
            f.result(timeout=5)

    def test_closed_rejects_submissions(self) -> None:
        """close 後は受け付けないことを確認"""
        self.serializer.run(lambda: None)
        self.serializer.close()
        with pytest.raises(RuntimeError, match="closed"):
            self.serializer.submit(lambda: None)


if __name__ == "__main__":
    unittest.main()
