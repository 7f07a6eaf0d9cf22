"""
CLI commands for protannot.

Provides the command-line interface for running the annotation pipeline
and preparing the record store.
"""

__all__ = ["annotate", "main", "store"]
