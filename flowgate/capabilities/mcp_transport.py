"""MCP tool transport over streamable HTTP.

Opens a short-lived ``ClientSession`` per operation against the server's
endpoint, sending the server's configured headers (and authorization).
``probe`` and ``refresh_catalog`` list each enabled server's tools and
feed the outcome into ``ToolServerRegistry.report_status``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from mcp import ClientSession
from mcp.client.streamable_http import streamablehttp_client

from flowgate.core.errors import TransportFault
from flowgate.core.tool_registry import ToolServerRegistry
from flowgate.models.tool_servers import ServerStatus, ToolServer
from flowgate.models.turns import ToolOutput, ToolSpec

if TYPE_CHECKING:
    from flowgate.core.runner import PipelineRunner

logger = logging.getLogger(__name__)


class McpToolTransport:
    """``ToolTransport`` speaking MCP to remote tool servers.

    Parameters
    ----------
    probe_timeout:
        Deadline in seconds for listing a server's tools during a probe.
    """

    def __init__(self, *, probe_timeout: float = 10.0) -> None:
        self.probe_timeout = probe_timeout

    @asynccontextmanager
    async def _session(self, server: ToolServer) -> AsyncIterator[ClientSession]:
        if not server.endpoint:
            raise TransportFault(f"Tool server {server.id} has no endpoint")
        async with streamablehttp_client(
            server.endpoint, headers=server.request_headers()
        ) as (read, write, _get_session_id):
            async with ClientSession(read, write) as session:
                await session.initialize()
                yield session

    # ------------------------------------------------------------------
    # ToolTransport
    # ------------------------------------------------------------------

    async def invoke(
        self, server: ToolServer, tool_name: str, arguments: dict[str, Any]
    ) -> ToolOutput:
        try:
            async with self._session(server) as session:
                result = await session.call_tool(tool_name, arguments=arguments)
        except TransportFault:
            raise
        except Exception as exc:
            raise TransportFault(f"{server.id}.{tool_name} failed: {exc}") from exc

        return ToolOutput(
            content=render_content(result.content),
            is_error=bool(result.isError),
            raw=result,
        )

    # ------------------------------------------------------------------
    # Discovery and health
    # ------------------------------------------------------------------

    async def list_tools(self, server: ToolServer) -> list[ToolSpec]:
        """Tools *server* advertises, filtered by its allow-list."""
        try:
            async with self._session(server) as session:
                listing = await session.list_tools()
        except TransportFault:
            raise
        except Exception as exc:
            raise TransportFault(f"Listing tools on {server.id} failed: {exc}") from exc

        return [
            ToolSpec(
                name=tool.name,
                description=tool.description or "",
                input_schema=tool.inputSchema or {"type": "object", "properties": {}},
                server_id=server.id,
            )
            for tool in listing.tools
            if server.exposes(tool.name)
        ]

    async def probe(self, server: ToolServer, registry: ToolServerRegistry) -> list[ToolSpec]:
        """List *server*'s tools and record the outcome in *registry*.

        Returns an empty list when the server could not be reached.
        """
        try:
            tools = await asyncio.wait_for(self.list_tools(server), self.probe_timeout)
        except asyncio.TimeoutError:
            message = f"Probe timed out after {self.probe_timeout}s"
            logger.warning("Tool server %s: %s", server.id, message)
            registry.report_status(server.id, ServerStatus.ERROR, message)
            return []
        except TransportFault as exc:
            logger.warning("Tool server %s unreachable: %s", server.id, exc)
            registry.report_status(server.id, ServerStatus.ERROR, str(exc))
            return []

        logger.info("Tool server %s connected (%d tools)", server.id, len(tools))
        registry.report_status(server.id, ServerStatus.CONNECTED)
        return tools

    async def refresh_catalog(
        self,
        registry: ToolServerRegistry,
        runner: PipelineRunner | None = None,
    ) -> dict[str, list[ToolSpec]]:
        """Probe every enabled server concurrently.

        When *runner* is given, each reachable server's tools are installed
        into its catalogue.
        """
        servers = registry.list_enabled()
        listings = await asyncio.gather(*(self.probe(s, registry) for s in servers))
        catalog = {server.id: tools for server, tools in zip(servers, listings)}
        if runner is not None:
            for server_id, tools in catalog.items():
                if tools:
                    runner.set_tool_catalog(server_id, tools)
        return catalog


def render_content(items: list[Any]) -> str:
    """Flatten MCP content blocks into text for the model."""
    parts: list[str] = []
    for item in items:
        text = getattr(item, "text", None)
        if text is not None:
            parts.append(text)
        elif hasattr(item, "model_dump_json"):
            parts.append(item.model_dump_json(exclude_none=True))
        else:
            parts.append(str(item))
    return "\n".join(parts)
