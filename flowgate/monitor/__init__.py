"""Terminal rendering of pipeline runs, graphs and tool servers."""

from flowgate.monitor.renderer import RunRenderer

__all__ = ["RunRenderer"]
