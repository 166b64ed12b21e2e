"""
Core modules for Shopping AI.

This package contains the provider registry, prompt templates, request
building, response extraction, cost estimation and the usage ledger.
"""
