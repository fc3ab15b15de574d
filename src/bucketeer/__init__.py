"""Bucketeer: multi-tenant bucket and file storage with per-user quotas."""

__version__ = "0.1.0"
