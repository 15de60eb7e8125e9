"""Streaming chat relay: one normalized event stream over many LLM providers."""

__version__ = "0.1.0"
