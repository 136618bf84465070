"""Flowgate core — graph, stage machine, registry, gate, approvals and runner."""
