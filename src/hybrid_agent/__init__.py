"""Hybrid retrieval agent package."""

from .config import AppConfig
from .types import AgentAnswer, ToolDecision

__all__ = ["AgentAnswer", "AppConfig", "ToolDecision"]
