"""
Source and target repositories for AD User Sync.

This package contains the repository interfaces used by the synchronizer and
their database-backed and directory-backed implementations.
"""
