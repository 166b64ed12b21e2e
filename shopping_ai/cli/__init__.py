"""
Command line interface for Shopping AI.
"""
