"""Third-party blob-store backends."""
