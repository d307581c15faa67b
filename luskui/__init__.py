"""LuskUI: stream coding-agent runs from Codex, Claude or Mistral to a browser."""

__version__ = "0.3.0"
