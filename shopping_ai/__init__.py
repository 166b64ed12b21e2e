"""
Shopping AI.

AI dispatch and usage accounting for a shopping-list application.
"""

__version__ = "0.1.0"
