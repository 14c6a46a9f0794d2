"""Shared utilities for devwrap."""
