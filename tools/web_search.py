"""Web search tool backed by the DuckDuckGo Instant Answer API."""

from typing import Any

import aiohttp

from agent.exceptions import ExecutionFailureError
from tools.base_tool import ExecutionLimits, Tool, ToolParameter

MAX_RESULTS = 5


class WebSearchTool(Tool):
    name = "web_search"
    description = "Search the web for information."
    parameters = {
        "query": ToolParameter("string", "Search query", required=True),
    }

    async def execute(self, args: dict[str, Any], limits: ExecutionLimits) -> list[dict]:
        params = {
            "q": args["query"],
            "format": "json",
            "no_html": "1",
            "skip_disambig": "1",
        }
        timeout = aiohttp.ClientTimeout(total=limits.timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(self.config.search_url, params=params) as resp:
                    if resp.status != 200:
                        body = await resp.text()
                        raise ExecutionFailureError(
                            f"Search failed (HTTP {resp.status}): {body[:200]}"
                        )
                    data = await resp.json(content_type=None)
        except aiohttp.ClientError as e:
            raise ExecutionFailureError(f"Search request failed: {e}") from e

        return parse_results(data)


def parse_results(data: dict, limit: int = MAX_RESULTS) -> list[dict]:
    """Flatten an Instant Answer payload into {title, url, snippet} results."""
    results: list[dict] = []
    if data.get("AbstractText") and data.get("AbstractURL"):
        results.append({
            "title": data.get("Heading") or data["AbstractURL"],
            "url": data["AbstractURL"],
            "snippet": data["AbstractText"],
        })

    for topic in _iter_topics(data.get("RelatedTopics") or []):
        if len(results) >= limit:
            break
        text = topic.get("Text", "")
        results.append({
            "title": text.split(" - ", 1)[0],
            "url": topic.get("FirstURL", ""),
            "snippet": text,
        })
    return results[:limit]


def _iter_topics(topics: list[dict]):
    for topic in topics:
        if "Topics" in topic:
            yield from _iter_topics(topic["Topics"])
        elif topic.get("FirstURL"):
            yield topic

