"""
CLI command modules, registered on the group in ``action_sync.main``.
"""
