"""Importance / urgency / priority scoring.

priority = clamp(round(w_urgency * urgency + w_importance * percentile) + 1, 1, 100)

* importance is propagated over the dependency graph: a task that many (and
  important) tasks wait on scores high. Deadlocked tasks get 0.
* urgency is a linear ramp toward the deadline (or due date).
"""

import math
from bisect import bisect_left
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from junban.core.graph import analyze
from junban.core.models import Task
from junban.util.logger import setup_logger
from junban.util.time import days_between, parse_datetime

logger = setup_logger("junban", is_stream=True, is_file=True)


@dataclass(frozen=True)
class ScoringConfig:
    window_days: float = 30
    decay: float = 0.5
    w_urgency: float = 0.4
    w_importance: float = 0.6

    @staticmethod
    def from_env(env: Mapping[str, str]) -> "ScoringConfig":
        d = ScoringConfig()
        return ScoringConfig(
            window_days=float(env.get("SCORE_WINDOW_DAYS", d.window_days)),
            decay=float(env.get("SCORE_DECAY", d.decay)),
            w_urgency=float(env.get("SCORE_W_URGENCY", d.w_urgency)),
            w_importance=float(env.get("SCORE_W_IMPORTANCE", d.w_importance)),
        )


@dataclass(frozen=True)
class Score:
    importance_raw: float
    importance_percentile: int
    urgency: int
    priority: int
    deadlock: bool


def round_half_up(x: float) -> int:
    return math.floor(x + 0.5)


def _clamp(v: int, lo: int, hi: int) -> int:
    return max(lo, min(hi, v))


def _ramp(target: datetime, now: datetime, span_days: float) -> int:
    # 100 at/after target, 0 at span_days before it
    days_left = days_between(now, target)
    if days_left <= 0:
        return 100
    if span_days <= 0 or days_left >= span_days:
        return 0
    return _clamp(round_half_up(100 * (1 - days_left / span_days)), 0, 100)


def compute_urgency(task: Task, now: datetime, config: ScoringConfig) -> int:
    if task.deadline:
        deadline = parse_datetime(task.deadline)
        if deadline is None:
            return 0
        return _ramp(deadline, now, config.window_days)

    if task.scheduled_due_at:
        due = parse_datetime(task.scheduled_due_at)
        if due is None:
            return 0
        r = task.recurrence
        if r is not None and r.type == "rolling" and r.interval > 0:
            return _ramp(due, now, r.interval)
        return _ramp(due, now, config.window_days)

    return 0


def propagate_importance(tasks: Mapping[str, Task], decay: float) -> tuple[dict[str, float], set[str]]:
    graph = analyze(tasks)
    raw: dict[str, float] = dict.fromkeys(tasks.keys(), 0.0)
    # 依存元 (dependents) を先に確定させるため逆順に処理する
    for tid in reversed(graph.order):
        raw[tid] = sum(1 + decay * raw[child] for child in graph.dependents[tid])
    for tid in graph.deadlock:
        raw[tid] = 0.0
    return raw, graph.deadlock


def percentile_ranker(values: Iterable[float]) -> Callable[[float], int]:
    population = sorted(values)
    n = len(population)

    def rank(v: float) -> int:
        if n <= 1:
            return 0
        less = bisect_left(population, v)
        return _clamp(round_half_up(less / (n - 1) * 100), 0, 100)

    return rank


def compute_priorities(
    tasks: Mapping[str, Task],
    now: datetime,
    config: ScoringConfig | None = None,
) -> dict[str, Score]:
    """全タスクのスコアを計算する。tasks は変更しない。"""
    cfg = config or ScoringConfig()
    raw, deadlock = propagate_importance(tasks, cfg.decay)
    rank = percentile_ranker(raw.values())

    scores: dict[str, Score] = {}
    for tid, t in tasks.items():
        importance = rank(raw[tid])
        urgency = compute_urgency(t, now, cfg)
        priority = _clamp(round_half_up(cfg.w_urgency * urgency + cfg.w_importance * importance) + 1, 1, 100)
        scores[tid] = Score(
            importance_raw=raw[tid],
            importance_percentile=importance,
            urgency=urgency,
            priority=priority,
            deadlock=tid in deadlock,
        )
    return scores


def recompute_all(
    tasks: Mapping[str, Task],
    now: datetime,
    config: ScoringConfig | None = None,
) -> list[dict[str, Any]]:
    """スコアを計算してタスクに書き戻す。priority 等が変わったタスクの一覧を返す。"""
    changed: list[dict[str, Any]] = []
    for tid, s in compute_priorities(tasks, now, config).items():
        t = tasks[tid]
        before = {"priority": t.priority, "urgency": t.urgency, "importance_percentile": t.importance_percentile}
        t.importance_raw = s.importance_raw
        t.importance_percentile = s.importance_percentile
        t.urgency = s.urgency
        t.priority = s.priority
        t.deadlock = s.deadlock
        after = {"priority": t.priority, "urgency": t.urgency, "importance_percentile": t.importance_percentile}
        if before != after:
            changed.append({"id": tid, "before": before, "after": after})
    if changed:
        logger.info("Priorities/metrics changed for %d task(s)", len(changed))
        logger.debug("Changes: %s", changed)
    return changed
