"""Best of JS MCP Server - Main server definition."""

import asyncio
import functools
import json
import sys
from contextlib import asynccontextmanager
from importlib.resources import files

from loguru import logger
from mcp.server.fastmcp import FastMCP
from mcp.types import ToolAnnotations
from pydantic import ValidationError

from bestofjs_mcp.client import SearchClient
from bestofjs_mcp.config import settings
from bestofjs_mcp.dataset import DatasetProvider
from bestofjs_mcp.query import QueryError, SearchQuery
from bestofjs_mcp.security import wrap_external_content
from bestofjs_mcp.sources.static_api import DataUnavailableError

# Configure logging
logger.remove()
logger.add(sys.stderr, level=settings.log_level)

# Default page size for search actions
_DEFAULT_LIMIT = 20

_HELP_TOPICS = ("projects", "tags", "config", "help")

# Module-level state (set during lifespan)
_client: SearchClient | None = None


def _get_client() -> SearchClient:
    """Return the shared client, creating it when running outside the lifespan."""
    global _client
    if _client is None:
        _client = SearchClient(DatasetProvider(settings.data_url))
    return _client


async def _preload_dataset(client: SearchClient) -> None:
    """Download and index the dataset in background.

    Non-fatal: if it fails, the first tool call will retry.
    """
    try:
        data = await client.provider.get_data()
        logger.info(f"Dataset pre-loaded: {data.stats()}")
    except Exception as e:
        logger.warning(f"Dataset pre-load failed (non-fatal): {e}")


@asynccontextmanager
async def _lifespan(_server: FastMCP):
    """Server lifespan: pre-load the dataset, drop it on shutdown."""
    global _client

    logger.info("Starting Best of JS MCP Server...")
    _client = SearchClient(DatasetProvider(settings.data_url))
    preload_task = asyncio.create_task(_preload_dataset(_client))

    yield

    logger.info("Shutting down Best of JS MCP Server...")

    if not preload_task.done():
        preload_task.cancel()
        try:
            await preload_task
        except (asyncio.CancelledError, Exception):
            pass

    _client.provider.close()
    _client = None


# Initialize MCP server
mcp = FastMCP(
    name="bestofjs",
    instructions=(
        "Best of JS MCP Server: the open-source JavaScript landscape. "
        "Use `projects` to search, rank and look up projects. "
        "Use `tags` to browse categories and their top projects. "
        "Queries use MongoDB-style criteria, sort, skip, limit and projection."
    ),
    lifespan=_lifespan,
)

# Grace period (seconds) given to a cancelled task before we abandon it.
_CANCEL_GRACE_PERIOD = 5.0


def _wrap_tool(tool_name: str):
    """Decorator to wrap tool results with XPIA safety markers.

    Error responses are passed through unwrapped.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            result = await func(*args, **kwargs)
            return wrap_external_content(tool_name, result)

        return wrapper

    return decorator


async def _with_timeout(coro, action: str) -> str:
    """Wrap coroutine with hard timeout (TOOL_TIMEOUT, 0 disables it)."""
    timeout = settings.tool_timeout
    if timeout <= 0:
        return await coro

    task = asyncio.create_task(coro)
    done, _pending = await asyncio.wait({task}, timeout=timeout)

    if done:
        return task.result()

    task.cancel()
    logger.warning(f"Tool '{action}' timed out after {timeout}s, cancelling...")
    try:
        await asyncio.wait_for(asyncio.shield(task), timeout=_CANCEL_GRACE_PERIOD)
    except (asyncio.CancelledError, TimeoutError, Exception):
        pass

    logger.error(f"Tool '{action}' timed out after {timeout}s")
    return (
        f"Error: '{action}' timed out after {timeout}s. "
        "Increase TOOL_TIMEOUT or try a smaller query."
    )


async def _execute(coro, action: str) -> str:
    """Run a client operation and serialize its result as JSON.

    Library errors become ``Error: ...`` strings for the agent.
    """
    try:
        result = await coro
    except DataUnavailableError as e:
        return f"Error: dataset unavailable: {e}"
    except (QueryError, ValidationError) as e:
        logger.warning(f"Invalid query for '{action}': {e}")
        return f"Error: invalid query: {e}"
    return json.dumps(result, ensure_ascii=False, indent=2)


async def _search_projects(**fields) -> dict:
    return await _get_client().find_projects(SearchQuery(**fields))


async def _search_tags(with_projects: bool, **fields) -> dict:
    client = _get_client()
    query = SearchQuery(**fields)
    if with_projects:
        return await client.find_tags_with_projects(query)
    return await client.find_tags(query)


# ---------------------------------------------------------------------------
# projects tool: search, hot, get, find_one
# ---------------------------------------------------------------------------


@mcp.tool(
    annotations=ToolAnnotations(
        readOnlyHint=True,
        openWorldHint=True,
        idempotentHint=True,
    ),
)
@_wrap_tool("projects")
async def projects(
    action: str,
    criteria: dict | None = None,
    sort: dict | None = None,
    skip: int = 0,
    limit: int | None = _DEFAULT_LIMIT,
    projection: dict | None = None,
    slug: str | None = None,
) -> str:
    """Search and look up JavaScript projects.
    - search: Filter with criteria, sort, skip, limit, projection
      (criteria {"tags": {"$all": [...]}} also returns related tags)
    - hot: Trending projects of the day (limit optional)
    - get: One project by slug (requires slug)
    - find_one: First project matching criteria (requires criteria)
    Use `help` tool for full documentation.
    """
    match action:
        case "search":
            return await _with_timeout(
                _execute(
                    _search_projects(
                        criteria=criteria,
                        sort=sort,
                        skip=skip,
                        limit=limit,
                        projection=projection,
                    ),
                    "projects.search",
                ),
                "projects.search",
            )

        case "hot":
            if limit is not None and limit < 0:
                return "Error: limit must be a non-negative integer"
            return await _with_timeout(
                _execute(_get_client().find_hot_projects(limit), "projects.hot"),
                "projects.hot",
            )

        case "get":
            if not slug:
                return "Error: slug is required for get action"
            project = await _with_timeout(
                _execute(_get_client().get_project_by_slug(slug), "projects.get"),
                "projects.get",
            )
            if project == "null":
                return f"Error: No project found with slug '{slug}'"
            return project

        case "find_one":
            if not criteria:
                return "Error: criteria is required for find_one action"
            project = await _with_timeout(
                _execute(_get_client().find_one(criteria), "projects.find_one"),
                "projects.find_one",
            )
            if project == "null":
                return "Error: No project matches the criteria"
            return project

        case _:
            return (
                f"Error: Unknown action '{action}'. "
                "Valid actions: search, hot, get, find_one"
            )


# ---------------------------------------------------------------------------
# tags tool: search, with_projects
# ---------------------------------------------------------------------------


@mcp.tool(
    annotations=ToolAnnotations(
        readOnlyHint=True,
        openWorldHint=True,
        idempotentHint=True,
    ),
)
@_wrap_tool("tags")
async def tags(
    action: str,
    criteria: dict | None = None,
    sort: dict | None = None,
    skip: int = 0,
    limit: int | None = _DEFAULT_LIMIT,
) -> str:
    """Browse project tags (categories).
    - search: Filter tags with criteria, sort (e.g. {"counter": -1}), skip, limit
    - with_projects: Same, each tag with its most starred projects attached
    Use `help` tool for full documentation.
    """
    match action:
        case "search" | "with_projects":
            tool_action = f"tags.{action}"
            return await _with_timeout(
                _execute(
                    _search_tags(
                        action == "with_projects",
                        criteria=criteria,
                        sort=sort,
                        skip=skip,
                        limit=limit,
                    ),
                    tool_action,
                ),
                tool_action,
            )

        case _:
            return (
                f"Error: Unknown action '{action}'. "
                "Valid actions: search, with_projects"
            )


@mcp.tool(
    annotations=ToolAnnotations(
        readOnlyHint=True,
        openWorldHint=False,
        idempotentHint=True,
    ),
)
async def help(tool_name: str = "projects") -> str:
    """Get full documentation for a tool.
    Use when compressed descriptions are insufficient.
    Valid tool names: projects, tags, config, help.
    """
    if tool_name not in _HELP_TOPICS:
        return (
            f"Error: No documentation found for tool '{tool_name}'. "
            f"Valid tool names: {', '.join(_HELP_TOPICS)}"
        )
    try:
        doc_file = files("bestofjs_mcp").joinpath("docs").joinpath(f"{tool_name}.md")
        return doc_file.read_text(encoding="utf-8")
    except FileNotFoundError:
        return f"Error: No documentation found for tool '{tool_name}'"
    except Exception as e:
        return f"Error loading documentation: {e}"


@mcp.tool(
    description=(
        "Server config and status. Actions: status|set. "
        "Use help tool with tool_name='config' for full docs."
    ),
    annotations=ToolAnnotations(
        title="Config",
        readOnlyHint=False,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=False,
    ),
)
async def config(
    action: str,
    key: str | None = None,
    value: str | None = None,
) -> str:
    """Server configuration and status.

    Actions:
    - status: Show current config and dataset status
    - set: Update runtime setting (key + value required)
    """
    match action:
        case "status":
            provider = _client.provider if _client else None
            dataset = None
            if provider and provider.loaded:
                dataset = (await provider.get_data()).stats()

            status = {
                "dataset": {
                    "url": settings.data_url,
                    "loaded": dataset is not None,
                    "stats": dataset,
                },
                "settings": {
                    "log_level": settings.log_level,
                    "tool_timeout": settings.tool_timeout,
                    "fetch_timeout": settings.fetch_timeout,
                    "fetch_retries": settings.fetch_retries,
                    "hot_projects_limit": settings.hot_projects_limit,
                    "tag_projects_limit": settings.tag_projects_limit,
                    "relevant_tags_scope": settings.resolve_relevant_tags_scope(),
                },
            }
            return json.dumps(status, indent=2, default=str)

        case "set":
            if not key or value is None:
                return json.dumps({"error": "key and value are required for set"})
            int_keys = {
                "tool_timeout",
                "fetch_timeout",
                "fetch_retries",
                "hot_projects_limit",
                "tag_projects_limit",
            }
            valid_keys = int_keys | {"log_level", "relevant_tags_scope"}
            if key not in valid_keys:
                return json.dumps(
                    {
                        "error": f"Invalid key: {key}",
                        "valid_keys": sorted(valid_keys),
                    }
                )
            if key == "log_level":
                settings.log_level = value.upper()
                logger.remove()
                logger.add(sys.stderr, level=settings.log_level)
            elif key in int_keys:
                try:
                    setattr(settings, key, int(value))
                except ValueError:
                    return json.dumps({"error": f"{key} must be an integer"})
            elif key == "relevant_tags_scope":
                if value.lower() not in ("page", "all"):
                    return json.dumps({"error": "relevant_tags_scope must be page or all"})
                settings.relevant_tags_scope = value.lower()
            return json.dumps(
                {
                    "status": "updated",
                    "key": key,
                    "value": getattr(settings, key),
                },
                default=str,
            )

        case _:
            return json.dumps(
                {
                    "error": f"Unknown action: {action}",
                    "valid_actions": ["status", "set"],
                }
            )


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------


@mcp.prompt()
def explore_tag(tag: str) -> str:
    """Generate a prompt to explore the projects of a tag."""
    return (
        f"Explore the JavaScript projects tagged '{tag}'.\n\n"
        "1. Use the tags tool with action='search' and criteria "
        f'{{"code": "{tag}"}} to confirm the tag exists.\n'
        "2. Use the projects tool with action='search', criteria "
        f'{{"tags": {{"$all": ["{tag}"]}}}} and sort {{"stars": -1}}.\n'
        "3. Summarize the leading projects and suggest related tags from relevantTags."
    )


@mcp.prompt()
def compare_projects(first: str, second: str) -> str:
    """Generate a prompt to compare two projects."""
    return (
        f"Compare the JavaScript projects '{first}' and '{second}'.\n\n"
        "Use the projects tool with action='get' and the slug of each project "
        "(lowercase name, dots removed, spaces as hyphens). Compare stars, "
        "trends, tags and description."
    )


def main() -> None:
    """Entry point for the MCP server."""
    mcp.run()


if __name__ == "__main__":
    main()
