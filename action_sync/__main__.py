"""
Entry point for ``python -m action_sync``.
"""

from .main import cli

if __name__ == "__main__":
    cli()
