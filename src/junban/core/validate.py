from junban.core.graph import analyze
from junban.core.models import Task


def detect_deadlocks(tasks: dict[str, Task]) -> list[str]:
    """Return ids of tasks caught in a dependency cycle, sorted."""
    return sorted(analyze(tasks).deadlock)


def detect_inconsistencies(tasks: dict[str, Task]) -> list[tuple[str, str, str]]:
    """Detect broken references in the collection.

    Returns a list of (task_id, issue_type, related_id) tuples.
    issue_type can be:
    - "self_dependency": task_id lists itself in dependencies
    - "missing_dependency": task_id depends on related_id, which does not exist
    - "duplicate_dependency": related_id appears more than once in dependencies
    - "missing_remedy_target": task_id is a remedy for related_id, which does not exist
    """
    inconsistencies: list[tuple[str, str, str]] = []

    for tid, t in tasks.items():
        seen: set[str] = set()
        for dep_id in t.dependencies:
            if dep_id == tid:
                inconsistencies.append((tid, "self_dependency", dep_id))
            elif dep_id not in tasks:
                inconsistencies.append((tid, "missing_dependency", dep_id))
            if dep_id in seen:
                inconsistencies.append((tid, "duplicate_dependency", dep_id))
            seen.add(dep_id)

        if t.remedy_for and t.remedy_for not in tasks:
            inconsistencies.append((tid, "missing_remedy_target", t.remedy_for))

    return inconsistencies
