"""
CodeQL Action Sync — Mirror the CodeQL Action and its bundles between GitHub hosts.
"""

__version__ = "1.0.0"
