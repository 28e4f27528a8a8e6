"""Kernel utilities: deterministic hashing."""
