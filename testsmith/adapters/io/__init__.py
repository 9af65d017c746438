"""Filesystem, process and terminal adapters."""
