"""Search client: the read operations served on top of the dataset snapshot."""

import asyncio

from loguru import logger

from bestofjs_mcp.config import settings
from bestofjs_mcp.dataset import DatasetProvider
from bestofjs_mcp.query import SearchQuery, project, run_query, validate_projection
from bestofjs_mcp.relevance import rank_relevant_tags

# Projects attached to each tag by find_tags_with_projects
_TAG_PROJECTS_SORT = {"stars": -1}
_TAG_PROJECTS_PROJECTION = {"name": 1, "owner_id": 1, "icon": 1}

# Tags left out of the "hot projects" list
_HOT_EXCLUDED_TAGS = ["meta", "learning"]


class SearchClient:
    """Answer project and tag queries against a lazily loaded dataset."""

    def __init__(self, provider: DatasetProvider | None = None):
        self.provider = provider or DatasetProvider(settings.data_url)

    async def find_projects(self, query: SearchQuery) -> dict:
        """Find projects, plus the selected and relevant tags of a tag filter.

        When the criteria hold ``{"tags": {"$all": [...]}}`` the result
        includes the resolved ``selectedTags`` and ``relevantTags``: other
        tags ranked by how often they appear alongside the selection.
        """
        logger.debug(f"Find projects: {query.model_dump(exclude_none=True)}")
        if query.projection:
            validate_projection(query.projection)
        data = await self.provider.get_data()
        projects, total = run_query(
            data.projects, query.model_copy(update={"projection": None})
        )

        tag_ids = _selected_tag_ids(query.criteria)
        selected_tags = [tag for tag in map(data.resolve_tag, tag_ids) if tag]

        relevant_tags = []
        if tag_ids:
            source = projects
            if settings.resolve_relevant_tags_scope() == "all":
                source, _ = run_query(
                    data.projects, SearchQuery(criteria=query.criteria)
                )
            relevant_ids = rank_relevant_tags(source, tag_ids)
            relevant_tags = [tag for tag in map(data.resolve_tag, relevant_ids) if tag]

        return {
            "projects": [
                data.populate(project(record, query.projection)) for record in projects
            ],
            "selectedTags": selected_tags,
            "relevantTags": relevant_tags,
            "total": total,
        }

    async def find_tags(self, query: SearchQuery) -> dict:
        """Find tags (projection is not applied to tags)."""
        data = await self.provider.get_data()
        tags, total = run_query(data.tags, query.model_copy(update={"projection": None}))
        return {"tags": tags, "total": total}

    async def find_tags_with_projects(self, query: SearchQuery) -> dict:
        """Find tags, each with its most popular projects attached."""
        result = await self.find_tags(query)
        tags = result["tags"]

        pages = await asyncio.gather(
            *(self.find_projects(_tag_projects_query(tag["code"])) for tag in tags)
        )
        for tag, page in zip(tags, pages, strict=True):
            tag["projects"] = page["projects"]

        return {"tags": tags, "total": result["total"]}

    async def find_hot_projects(self, limit: int | None = None) -> dict:
        """Projects with the best daily trend, skipping meta/learning entries."""
        query = SearchQuery(
            criteria={"tags": {"$nin": _HOT_EXCLUDED_TAGS}},
            sort={"trends.daily": -1},
            limit=settings.hot_projects_limit if limit is None else limit,
        )
        return await self.find_projects(query)

    async def find_one(self, criteria: dict | None) -> dict | None:
        """Return the first project matching `criteria`, populated."""
        data = await self.provider.get_data()
        projects, _ = run_query(data.projects, SearchQuery(criteria=criteria, limit=1))
        return data.populate(projects[0]) if projects else None

    async def get_project_by_slug(self, slug: str) -> dict | None:
        """Return the populated project identified by `slug`, None if unknown."""
        data = await self.provider.get_data()
        record = data.projects_by_slug.get(slug)
        if record is None:
            logger.debug(f"No project with slug '{slug}'")
            return None
        return data.populate(record)


def _selected_tag_ids(criteria: dict) -> list[str]:
    tags = criteria.get("tags")
    if isinstance(tags, dict) and isinstance(tags.get("$all"), list):
        return [code for code in tags["$all"] if isinstance(code, str)]
    return []


def _tag_projects_query(code: str) -> SearchQuery:
    return SearchQuery(
        criteria={"tags": {"$in": [code]}},
        sort=_TAG_PROJECTS_SORT,
        limit=settings.tag_projects_limit,
        projection=_TAG_PROJECTS_PROJECTION,
    )
