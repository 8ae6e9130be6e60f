#!/usr/bin/env python3
"""
Build the page index against the configured Notion workspace and print stats.

Useful to check NOTION_API_KEY access before starting the server, and to see
how many pages, databases and rows the integration can reach.

Run from project root:

    python scripts/refresh_index.py
    python scripts/refresh_index.py --search "leave policy"
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

# Project root on path so "workspace_rag" resolves
_ROOT = Path(__file__).resolve().parent.parent
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

from workspace_rag.core.errors import IndexBuildError
from workspace_rag.services.page_index import PageIndex
from workspace_rag.services.structured_search import StructuredSearch
from workspace_rag.services.workspace_client import NotionWorkspaceClient


async def run(query: str | None) -> int:
    async with NotionWorkspaceClient() as workspace:
        if not workspace.is_configured:
            print("NOTION_API_KEY is not set.", file=sys.stderr)
            return 2
        index = PageIndex(workspace)
        try:
            await index.initialize()
        except IndexBuildError as e:
            print(f"Index build failed: {e.message}", file=sys.stderr)
            return 1
        print(json.dumps(index.stats(), indent=2))
        if query:
            search = StructuredSearch(index)
            search.initialize()
            for c in search.search(query):
                print(f"  {c.score:>7.3f}  {c.preview}  [{c.id}]")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Build the workspace page index and print stats.")
    parser.add_argument("--search", metavar="QUERY", help="Also print the top candidates for QUERY.")
    args = parser.parse_args()
    sys.exit(asyncio.run(run(args.search)))


if __name__ == "__main__":
    main()
