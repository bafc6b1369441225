"""Shared helpers for the lark CLI."""
