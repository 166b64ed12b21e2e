"""
SDK for Shopping AI.

Provides programmatic access to the AI tasks and their usage accounting.
"""

from .client import ShoppingAIClient

__all__ = ["ShoppingAIClient"]
