"""Best of JS MCP Server entry point."""

import asyncio
import sys


def _warmup() -> int:
    """Download the dataset once to check connectivity and data shape.

    Run this before adding bestofjs-mcp to your MCP config:
        uvx bestofjs-mcp warmup

    Returns the process exit code.
    """
    from bestofjs_mcp.config import settings
    from bestofjs_mcp.dataset import DatasetProvider
    from bestofjs_mcp.sources.static_api import DataUnavailableError

    print(f"Best of JS warmup: fetching {settings.data_url} ...")

    provider = DatasetProvider(settings.data_url)
    try:
        data = asyncio.run(provider.get_data())
    except DataUnavailableError as e:
        print(f"  Dataset unavailable: {e}")
        return 1

    stats = data.stats()
    print(f"  Projects: {stats['projects']}")
    print(f"  Tags: {stats['tags']}")
    if stats["slugs"] != stats["projects"]:
        print(f"  Slug collisions: {stats['projects'] - stats['slugs']}")
    print("Warmup complete!")
    return 0


def _cli() -> None:
    """CLI dispatcher: server (default) or warmup subcommand."""
    if len(sys.argv) >= 2 and sys.argv[1] == "warmup":
        sys.exit(_warmup())
    else:
        from bestofjs_mcp.server import main

        main()


if __name__ == "__main__":
    _cli()
