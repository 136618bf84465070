"""Stock pipeline flows: the chat agent and the voice agent."""

from __future__ import annotations

from collections.abc import Callable

from flowgate.core.pipeline_graph import PipelineGraph
from flowgate.flows.chat import CHAT_EDGES, CHAT_STAGES, chat_flow
from flowgate.flows.voice import VOICE_EDGES, VOICE_STAGES, voice_flow

FLOWS: dict[str, Callable[[], PipelineGraph]] = {
    "chat": chat_flow,
    "voice": voice_flow,
}


def get_flow(name: str) -> PipelineGraph:
    """Build the stock flow called *name*."""
    try:
        factory = FLOWS[name]
    except KeyError:
        raise KeyError(
            f"Unknown flow {name!r}; available: {', '.join(sorted(FLOWS))}"
        ) from None
    return factory()


__all__ = [
    "FLOWS",
    "get_flow",
    "chat_flow",
    "voice_flow",
    "CHAT_STAGES",
    "CHAT_EDGES",
    "VOICE_STAGES",
    "VOICE_EDGES",
]
