"""Core infrastructure: config, errors, events, logging, storage and metadata backends."""
