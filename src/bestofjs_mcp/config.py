"""Configuration settings for the Best of JS MCP Server."""

from pydantic_settings import BaseSettings

# Static API published by the Best of JS project (projects + tags in one file)
_DEFAULT_DATA_URL = "https://bestofjs-static-api.vercel.app/projects.json"

_RELEVANT_TAGS_SCOPES = ("page", "all")


class Settings(BaseSettings):
    """Best of JS MCP Server configuration.

    Environment variables:
    - DATA_URL: URL of the JSON document with ``projects`` and ``tags``
    - FETCH_TIMEOUT: HTTP timeout for the dataset download (seconds)
    - FETCH_RETRIES: Attempts before the dataset is reported unavailable
    - TOOL_TIMEOUT: Hard limit per tool call (seconds, 0 = no timeout)
    - HOT_PROJECTS_LIMIT: Default page size of the ``hot`` action
    - TAG_PROJECTS_LIMIT: Projects attached to each tag by ``with_projects``
    - RELEVANT_TAGS_SCOPE: "page" (rank tags from the returned page) or
        "all" (rank tags from every matching project)
    - LOG_LEVEL: loguru level for the stderr sink
    """

    # Dataset source
    data_url: str = _DEFAULT_DATA_URL
    fetch_timeout: int = 30
    fetch_retries: int = 3

    # Tool execution timeout (seconds, 0 = no timeout)
    tool_timeout: int = 60

    # Query defaults
    hot_projects_limit: int = 5
    tag_projects_limit: int = 5
    relevant_tags_scope: str = "page"

    # Logging
    log_level: str = "INFO"

    model_config = {"env_prefix": "", "case_sensitive": False}

    def resolve_relevant_tags_scope(self) -> str:
        """Return a valid relevance scope, falling back to 'page'."""
        scope = self.relevant_tags_scope.strip().lower()
        if scope in _RELEVANT_TAGS_SCOPES:
            return scope
        return "page"

    def resolve_fetch_retries(self) -> int:
        """Return the number of fetch attempts (always at least one)."""
        return max(1, self.fetch_retries)


settings = Settings()
