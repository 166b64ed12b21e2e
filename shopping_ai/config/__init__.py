"""
Configuration for Shopping AI.
"""
