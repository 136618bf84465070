"""Tool-server registry — the configured MCP servers and their policies.

The registry is the single source of truth for which tool servers exist,
which are enabled, how their tool calls are approved, and their last-known
health.  A master switch (``registry_enabled``) turns tool calling off
entirely without touching individual server state.

Concurrency
-----------
Runs read the registry concurrently while the UI/CLI may write to it.
Servers are frozen models; the server tuple and the master switch live
together in one immutable state tuple.  Writers build a new state under a
lock and swap it in with one assignment, readers grab the current state
without locking.  A reader therefore sees either the old or the new
registry, never a half-applied update.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Mapping, Sequence
from typing import TYPE_CHECKING, Any, NamedTuple

from flowgate.core.errors import ToolServerConfigError, ToolServerNotFoundError
from flowgate.models.tool_servers import (
    DEFAULT_TOOL_SERVERS,
    ApprovalDecision,
    ServerStatus,
    ToolServer,
    ToolServerConfig,
)
from flowgate.models.turns import ToolSpec

if TYPE_CHECKING:
    from flowgate.config import FlowgateSettings

logger = logging.getLogger(__name__)

# Fields a caller may not patch through ``update_server``.
_IMMUTABLE_FIELDS = frozenset({"id", "status", "last_error"})


class _RegistryState(NamedTuple):
    servers: tuple[ToolServer, ...]
    registry_enabled: bool


class ToolServerRegistry:
    """Holds the configured tool servers.

    Parameters
    ----------
    servers:
        Initial servers.  Defaults to the stock catalogue.
    registry_enabled:
        Initial state of the master switch.

    Examples
    --------
    >>> registry = ToolServerRegistry(servers=[])
    >>> server = registry.add_server(ToolServerConfig(endpoint="https://example.test/mcp"))
    >>> [s.id for s in registry.list_enabled()] == [server.id]
    True
    """

    def __init__(
        self,
        servers: Iterable[ToolServer] | None = None,
        *,
        registry_enabled: bool = True,
    ) -> None:
        initial = tuple(DEFAULT_TOOL_SERVERS if servers is None else servers)
        ids = [s.id for s in initial]
        if len(ids) != len(set(ids)):
            raise ToolServerConfigError(f"Duplicate tool-server ids: {ids}")
        self._write_lock = threading.Lock()
        self._state = _RegistryState(initial, registry_enabled)

    @classmethod
    def from_settings(cls, settings: FlowgateSettings) -> ToolServerRegistry:
        """Build a registry from configured servers, or the stock catalogue."""
        return cls(settings.tool_servers, registry_enabled=settings.registry_enabled)

    # -- Registration -------------------------------------------------------

    def add_server(self, config: ToolServerConfig | Mapping[str, Any]) -> ToolServer:
        """Register a new server under a fresh unique id.

        Raises
        ------
        ToolServerConfigError
            If the definition has no endpoint.
        """
        if not isinstance(config, ToolServerConfig):
            config = ToolServerConfig.model_validate(config)
        if not config.endpoint.strip():
            raise ToolServerConfigError("Tool server definition requires an endpoint.")

        with self._write_lock:
            state = self._state
            taken = {s.id for s in state.servers}
            server = ToolServer(**config.model_dump())
            while server.id in taken:
                server = ToolServer(**config.model_dump())
            self._state = state._replace(servers=state.servers + (server,))

        logger.info("Registered tool server %s (%s)", server.id, server.label or server.endpoint)
        return server

    def update_server(self, server_id: str, **patch: Any) -> ToolServer:
        """Merge *patch* into a server.

        Raises
        ------
        ToolServerNotFoundError
            If *server_id* is not registered.
        ValueError
            If *patch* names an immutable or unknown field.
        """
        illegal = set(patch) & _IMMUTABLE_FIELDS
        if illegal:
            raise ValueError(f"Cannot patch immutable field(s): {sorted(illegal)}")
        unknown = set(patch) - set(ToolServer.model_fields)
        if unknown:
            raise ValueError(f"Unknown tool-server field(s): {sorted(unknown)}")

        with self._write_lock:
            current = self._require(server_id)
            merged = current.model_dump()
            merged.update(patch)
            # Re-validate so legacy policy shapes and types are normalised.
            updated = ToolServer.model_validate(merged)
            if not updated.endpoint.strip():
                raise ToolServerConfigError("Tool server definition requires an endpoint.")
            self._replace(updated)

        logger.info("Updated tool server %s: %s", server_id, sorted(patch))
        return updated

    def remove_server(self, server_id: str) -> bool:
        """Remove a server.  Returns ``False`` if it was not registered."""
        with self._write_lock:
            state = self._state
            remaining = tuple(s for s in state.servers if s.id != server_id)
            if len(remaining) == len(state.servers):
                logger.warning("Cannot remove '%s': not found in registry.", server_id)
                return False
            self._state = state._replace(servers=remaining)
        logger.info("Removed tool server %s", server_id)
        return True

    def toggle_server(self, server_id: str) -> ToolServer:
        """Flip a server's ``enabled`` flag.

        Disabling only affects invocations not yet dispatched; calls already
        in flight run to completion.
        """
        with self._write_lock:
            current = self._require(server_id)
            updated = current.model_copy(update={"enabled": not current.enabled})
            self._replace(updated)
        logger.info(
            "%s tool server %s", "Enabled" if updated.enabled else "Disabled", server_id
        )
        return updated

    # -- Master switch ------------------------------------------------------

    @property
    def registry_enabled(self) -> bool:
        return self._state.registry_enabled

    def set_registry_enabled(self, enabled: bool) -> None:
        with self._write_lock:
            self._state = self._state._replace(registry_enabled=enabled)
        logger.info("Tool calling %s", "enabled" if enabled else "disabled")

    def toggle_registry(self) -> bool:
        with self._write_lock:
            enabled = not self._state.registry_enabled
            self._state = self._state._replace(registry_enabled=enabled)
        logger.info("Tool calling %s", "enabled" if enabled else "disabled")
        return enabled

    # -- Health -------------------------------------------------------------

    def report_status(
        self, server_id: str, status: ServerStatus, error: str | None = None
    ) -> None:
        """Record a health-probe or call outcome from the transport layer.

        Reports for servers removed in the meantime are ignored.
        """
        with self._write_lock:
            current = self._find(server_id)
            if current is None:
                logger.debug("Ignoring status report for unknown server %s", server_id)
                return
            self._replace(
                current.model_copy(update={"status": ServerStatus(status), "last_error": error})
            )
        if status == ServerStatus.ERROR:
            logger.warning("Tool server %s reported error: %s", server_id, error)
        else:
            logger.debug("Tool server %s status=%s", server_id, ServerStatus(status).value)

    # -- Lookup -------------------------------------------------------------

    def get(self, server_id: str) -> ToolServer | None:
        return self._find(server_id)

    def list_servers(self) -> list[ToolServer]:
        """All registered servers in registration order, enabled or not."""
        return list(self._state.servers)

    def list_enabled(self) -> list[ToolServer]:
        """Snapshot of the enabled servers; empty when the master switch is off."""
        state = self._state
        if not state.registry_enabled:
            return []
        return [s for s in state.servers if s.enabled]

    def resolve_approval(self, server_id: str, tool_name: str) -> ApprovalDecision:
        """Decide how an invocation of *tool_name* on *server_id* is approved.

        ``TOOL_UNAVAILABLE`` when the server is unknown, disabled, tool
        calling is switched off, or the tool is outside the server's
        allow-list.  Otherwise the server's approval policy decides.
        """
        server = next((s for s in self.list_enabled() if s.id == server_id), None)
        if server is None or not server.exposes(tool_name):
            return ApprovalDecision.TOOL_UNAVAILABLE
        if server.approval_policy.requires_approval(tool_name):
            return ApprovalDecision.REQUIRES_APPROVAL
        return ApprovalDecision.AUTO_APPROVED

    # -- Tool catalogue -----------------------------------------------------

    def offered_tools(self, catalog: Mapping[str, Sequence[ToolSpec]]) -> list[ToolSpec]:
        """Tools the model may be offered this turn.

        *catalog* maps server id to the tools that server advertises.  Only
        enabled servers contribute, filtered by their allow-lists; when two
        servers advertise the same name, the first registered wins.
        """
        offered: list[ToolSpec] = []
        seen: set[str] = set()
        for server in self.list_enabled():
            for spec in catalog.get(server.id, ()):
                if spec.name in seen or not server.exposes(spec.name):
                    continue
                seen.add(spec.name)
                offered.append(spec.model_copy(update={"server_id": server.id}))
        return offered

    def owner_of(
        self, tool_name: str, catalog: Mapping[str, Sequence[ToolSpec]]
    ) -> ToolServer | None:
        """The enabled server that currently offers *tool_name*, if any."""
        for server in self.list_enabled():
            if not server.exposes(tool_name):
                continue
            if any(spec.name == tool_name for spec in catalog.get(server.id, ())):
                return server
        return None

    # -- Reset / stats ------------------------------------------------------

    def reset(self) -> None:
        """Restore the stock catalogue and turn tool calling back on."""
        with self._write_lock:
            self._state = _RegistryState(tuple(DEFAULT_TOOL_SERVERS), True)
        logger.info("Tool-server registry reset to defaults.")

    def get_stats(self) -> dict[str, Any]:
        """Summary counts, keyed ``total``, ``enabled_count`` and ``by_status``."""
        state = self._state
        servers = state.servers
        by_status: dict[str, int] = {s.value: 0 for s in ServerStatus}
        for server in servers:
            by_status[server.status.value] += 1
        return {
            "total": len(servers),
            "enabled_count": sum(1 for s in servers if s.enabled),
            "registry_enabled": state.registry_enabled,
            "by_status": by_status,
        }

    # -- Internals (callers hold the write lock) ----------------------------

    def _find(self, server_id: str) -> ToolServer | None:
        return next((s for s in self._state.servers if s.id == server_id), None)

    def _require(self, server_id: str) -> ToolServer:
        server = self._find(server_id)
        if server is None:
            raise ToolServerNotFoundError(f"Tool server '{server_id}' is not registered.")
        return server

    def _replace(self, updated: ToolServer) -> None:
        state = self._state
        self._state = state._replace(
            servers=tuple(updated if s.id == updated.id else s for s in state.servers)
        )
