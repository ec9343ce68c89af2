"""In-memory snapshot of the Best of JS dataset.

The raw document is downloaded once, then indexed:

- tags are keyed by ``code`` and get a ``counter`` of referencing projects
- projects are keyed by slug for direct lookup
- ``populate`` turns a raw project into the enriched record served to callers

The snapshot is never mutated after it is built. ``DatasetProvider`` owns
its lifecycle and makes sure concurrent first callers share a single fetch.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Awaitable, Callable
from functools import partial

from loguru import logger
from slugify import slugify

from bestofjs_mcp.sources.static_api import fetch_project_data

GITHUB_URL = "https://github.com/"

# Characters removed before slugifying ("React.js" -> "reactjs")
_SLUG_REMOVE = re.compile(r"[.'/]")


def get_project_slug(name: str) -> str:
    """Return the URL slug identifying a project, derived from its name."""
    return slugify(_SLUG_REMOVE.sub("", name.lower()))


def resolve_tag(code: str, tags_by_key: dict[str, dict]) -> dict | None:
    """Return a copy of the tag with this code, None when the dataset does not know it."""
    tag = tags_by_key.get(code)
    return dict(tag) if tag is not None else None


def build_tag_index(tags: list[dict], projects: list[dict]) -> dict[str, dict]:
    """Key tags by code and count the projects referencing each one.

    Tag codes used by projects but absent from ``tags`` are ignored.
    """
    tags_by_key = {tag["code"]: {**tag, "counter": 0} for tag in tags}

    for project in projects:
        for code in dict.fromkeys(project.get("tags") or []):
            tag = tags_by_key.get(code)
            if tag is not None:
                tag["counter"] += 1

    return tags_by_key


def populate_project(project: dict, tags_by_key: dict[str, dict]) -> dict:
    """Return an enriched copy of a raw project record.

    Adds ``repository`` (from ``full_name``), ``slug`` (from ``name``) and
    ``packageName`` (from ``npm``), and replaces tag codes by tag records.
    Unknown tag codes are dropped.
    """
    populated = dict(project)

    full_name = project.get("full_name")
    if full_name:
        populated["repository"] = GITHUB_URL + full_name

    tags = project.get("tags")
    if tags:
        populated["tags"] = [
            tag
            for tag in (resolve_tag(code, tags_by_key) for code in tags)
            if tag is not None
        ]

    if "name" in project:
        populated["slug"] = get_project_slug(project["name"])

    if project.get("npm"):
        populated["packageName"] = project["npm"]

    return populated


class Dataset:
    """Immutable, indexed view of one downloaded document."""

    def __init__(self, projects: list[dict], raw_tags: list[dict]):
        self.projects = projects
        self.tags_by_key = build_tag_index(raw_tags, projects)
        self.tags = list(self.tags_by_key.values())
        self.populate: Callable[[dict], dict] = partial(
            populate_project, tags_by_key=self.tags_by_key
        )
        self.projects_by_slug = self._index_by_slug(projects)

    @staticmethod
    def _index_by_slug(projects: list[dict]) -> dict[str, dict]:
        by_slug: dict[str, dict] = {}
        for project in projects:
            slug = get_project_slug(project.get("name", ""))
            if slug in by_slug:
                logger.warning(
                    f"Slug collision on '{slug}': "
                    f"'{by_slug[slug].get('name')}' replaced by '{project.get('name')}'"
                )
            by_slug[slug] = project
        return by_slug

    @classmethod
    def from_payload(cls, payload: dict) -> Dataset:
        """Build a snapshot from the document returned by the static API."""
        return cls(payload["projects"], payload["tags"])

    def resolve_tag(self, code: str) -> dict | None:
        return resolve_tag(code, self.tags_by_key)

    def stats(self) -> dict:
        """Get snapshot statistics."""
        return {
            "projects": len(self.projects),
            "tags": len(self.tags),
            "slugs": len(self.projects_by_slug),
        }


class DatasetProvider:
    """Lazily builds the dataset snapshot and keeps it for the process lifetime.

    The first ``get_data()`` call downloads and indexes the document; callers
    arriving while that build is in flight wait for it instead of starting
    their own download. A failed build is not cached, so the next call
    retries.
    """

    def __init__(
        self,
        url: str | None = None,
        fetcher: Callable[[str | None], Awaitable[dict]] = fetch_project_data,
    ):
        self._url = url
        self._fetcher = fetcher
        self._dataset: Dataset | None = None
        self._lock = asyncio.Lock()

    @property
    def loaded(self) -> bool:
        return self._dataset is not None

    async def get_data(self) -> Dataset:
        """Return the snapshot, building it on first use."""
        if self._dataset is not None:
            return self._dataset

        async with self._lock:
            # Another caller may have finished the build while we waited
            if self._dataset is None:
                payload = await self._fetcher(self._url)
                self._dataset = Dataset.from_payload(payload)
                logger.info(f"Dataset loaded: {self._dataset.stats()}")
            return self._dataset

    def close(self) -> None:
        """Drop the snapshot."""
        self._dataset = None
