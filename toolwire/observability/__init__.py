"""Observability - structured logging and timing helpers.

Submodules:
    logging: Structured JSON logging formatter and timing utilities
"""
