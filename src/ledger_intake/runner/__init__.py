"""
CLI runner module.

Provides commands:
- import-file / import-screenshots / import-email: Queue and run an import
- jobs / show: Inspect jobs and parsed transactions
- confirm / reject: Review actions
- sweep / cleanup / stats: Housekeeping
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
