"""Tag co-occurrence ranking used to suggest related filters."""

from collections.abc import Iterable


def count_tags(projects: Iterable[dict], excluded_tags: Iterable[str] = ()) -> dict[str, int]:
    """Count the projects referencing each tag code, in first-encounter order."""
    excluded = set(excluded_tags)
    counts: dict[str, int] = {}
    for project in projects:
        for code in project.get("tags") or []:
            if code not in excluded:
                counts[code] = counts.get(code, 0) + 1
    return counts


def rank_relevant_tags(
    projects: Iterable[dict], excluded_tags: Iterable[str] = ()
) -> list[str]:
    """Return tag codes found in `projects`, most frequent first.

    Tags in `excluded_tags` (usually the ones already selected) are skipped.
    Ties keep the order in which tags were first seen.
    """
    counts = count_tags(projects, excluded_tags)
    return sorted(counts, key=counts.__getitem__, reverse=True)
