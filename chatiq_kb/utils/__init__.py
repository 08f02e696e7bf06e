"""Shared utilities: error hierarchy, structured logging, background effects."""
