"""Polaris Engine: code intelligence and tool orchestration for an AI coding assistant."""

__version__ = "0.1.0"
