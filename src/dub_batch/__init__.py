"""Batch media translation and dubbing orchestrator."""

__version__ = "0.1.0"
