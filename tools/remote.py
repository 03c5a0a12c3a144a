"""
Remote tools discovered from MCP servers.

Servers are listed in ``mcp.json`` (the same shape other MCP hosts use):

    {
      "mcpServers": {
        "apify": {"command": "npx", "args": ["-y", "@apify/actors-mcp-server"], "env": {...}},
        "docs": {"url": "http://localhost:8000/mcp"}
      }
    }

Each server's tools are registered as ``mcp_<server>_<tool>`` so they cannot
clash with built-in tools, and their description is prefixed with the server
name.
"""

import json
import logging
import os
import re
from pathlib import Path
from typing import Any

from fastmcp import Client
from fastmcp.client.transports import StdioTransport, StreamableHttpTransport

from tools import Tool, ToolRegistry

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9_-]")
_QUOTA_MARKERS = ("limit", "usage", "exhausted", "quota")


def namespaced_tool_name(server: str, tool_name: str) -> str:
    return _UNSAFE_CHARS.sub("_", f"mcp_{server}_{tool_name}")


def load_mcp_config(path: str) -> dict[str, dict]:
    """Server configs from ``mcp.json``; empty when the file is missing or invalid."""
    config_path = Path(path).expanduser()
    if not config_path.exists():
        return {}
    try:
        with open(config_path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        logger.warning("Invalid %s, skipping MCP servers: %s", config_path, e)
        return {}
    servers = data.get("mcpServers") or {}
    return servers if isinstance(servers, dict) else {}


def _make_transport(server_config: dict):
    if server_config.get("url"):
        return StreamableHttpTransport(url=server_config["url"])
    return StdioTransport(
        command=server_config["command"],
        args=server_config.get("args", []),
        env={**os.environ, **(server_config.get("env") or {})},
    )


def _result_text(result: Any) -> str:
    parts = []
    for item in result.content or []:
        text = getattr(item, "text", None)
        if text is None:
            data = item.model_dump() if hasattr(item, "model_dump") else item
            text = json.dumps(data, default=str)
        parts.append(text)
    return "\n".join(parts)


class RemoteToolProvider:
    """One connected MCP server and the tools it exposes."""

    def __init__(self, name: str, client: Client):
        self.name = name
        self.client = client
        self._connected = False

    async def connect(self):
        await self.client.__aenter__()
        self._connected = True

    async def close(self):
        if not self._connected:
            return
        try:
            await self.client.__aexit__(None, None, None)
        except Exception as e:
            logger.error("Error closing MCP server %s: %s", self.name, e)
        finally:
            self._connected = False

    async def list_tools(self) -> list[Tool]:
        tools = []
        for remote in await self.client.list_tools():
            tools.append(Tool(
                name=namespaced_tool_name(self.name, remote.name),
                description=f"[MCP Server: {self.name}] {remote.description or 'No description'}",
                parameters=remote.inputSchema or {"type": "object", "properties": {}},
                fn=self._make_handler(remote.name),
                provider=self.name,
            ))
        return tools

    def _make_handler(self, remote_name: str):
        async def handler(params: dict, ctx) -> dict | str:
            return await self.call(remote_name, params)
        return handler

    async def call(self, remote_name: str, arguments: dict) -> dict | str:
        try:
            result = await self.client.call_tool_mcp(name=remote_name, arguments=arguments)
        except Exception as e:
            message = str(e)
            if any(marker in message.lower() for marker in _QUOTA_MARKERS):
                return {
                    "error": f"MCP server {self.name} appears to have exhausted its usage limit or quota: {message}",
                }
            return {"error": f"Error calling MCP tool {remote_name}: {message}"}

        text = _result_text(result)
        if result.isError:
            return {"error": text or f"MCP tool {remote_name} failed"}
        return text or "Tool executed successfully (no output)."


class RemoteToolManager:
    """Connects to every configured MCP server and registers its tools."""

    def __init__(self, config_path: str = "mcp.json"):
        self.config_path = config_path
        self.providers: dict[str, RemoteToolProvider] = {}

    async def start(self, registry: ToolRegistry) -> int:
        """Connect and register. Servers that fail to connect are logged and skipped."""
        servers = load_mcp_config(self.config_path)
        count = 0
        for server_name, server_config in servers.items():
            logger.info("Connecting to MCP server %s", server_name)
            provider = None
            try:
                provider = RemoteToolProvider(server_name, Client(_make_transport(server_config)))
                await provider.connect()
                tools = await provider.list_tools()
            except Exception as e:
                logger.error("Failed to connect to MCP server %s: %s", server_name, e)
                if provider is not None:
                    await provider.close()
                continue
            self.providers[server_name] = provider
            for t in tools:
                registry.register(t)
            count += len(tools)
            logger.info("MCP server %s: %d tools", server_name, len(tools))
        return count

    async def stop(self, registry: ToolRegistry | None = None):
        for name, provider in list(self.providers.items()):
            if registry is not None:
                registry.unregister_provider(name)
            await provider.close()
        self.providers.clear()
