"""Shared helpers: encoding, hashing, retry and locking."""
