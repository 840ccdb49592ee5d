"""
SDK for AI Call Governor.

Provides backend clients whose calls are routed through the governor.
"""

from .openai_client import GovernedOpenAI

__all__ = ["GovernedOpenAI"]
