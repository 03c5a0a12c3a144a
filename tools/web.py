"""
Web search.

Uses Tavily when TAVILY_API_KEY is set and falls back to DuckDuckGo (ddgs),
which needs no key.
"""

import logging
import os

import httpx
from ddgs import DDGS

from tools import tool, tool_error

logger = logging.getLogger(__name__)

TAVILY_URL = "https://api.tavily.com/search"


def _tavily_search(query: str, max_results: int, api_key: str) -> list[dict]:
    response = httpx.post(
        TAVILY_URL,
        json={
            "api_key": api_key,
            "query": query,
            "search_depth": "basic",
            "max_results": max_results,
        },
        timeout=20,
    )
    response.raise_for_status()
    return [
        {"title": r.get("title", ""), "url": r.get("url", ""), "snippet": r.get("content", "")}
        for r in response.json().get("results", [])
    ]


def _ddgs_search(query: str, max_results: int) -> list[dict]:
    with DDGS() as ddgs:
        return [
            {"title": r.get("title", ""), "url": r.get("href", ""), "snippet": r.get("body", "")}
            for r in ddgs.text(query, max_results=max_results)
        ]


@tool
def web_search(query: str, max_results: int = 5) -> dict:
    """Search the web. Use this for current events, documentation, or anything you
    do not know.

    Args:
        query: What to search for
        max_results: Maximum number of results to return (default 5)
    """
    api_key = os.environ.get("TAVILY_API_KEY")
    if api_key:
        try:
            results = _tavily_search(query, max_results, api_key)
            if results:
                return {"query": query, "provider": "tavily", "results": results}
        except httpx.HTTPError as e:
            logger.warning("Tavily search failed, falling back to DuckDuckGo: %s", e)

    try:
        results = _ddgs_search(query, max_results)
    except Exception as e:
        if "anomaly" in str(e).lower() or "ratelimit" in str(e).lower():
            return tool_error(
                "DuckDuckGo blocked the request",
                fix="Set TAVILY_API_KEY for reliable search.",
            )
        return tool_error(f"Search failed: {e}")
    if not results:
        return {"query": query, "provider": "duckduckgo", "results": [], "note": "No results found."}
    return {"query": query, "provider": "duckduckgo", "results": results}
