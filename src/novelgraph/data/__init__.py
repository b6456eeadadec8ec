"""Bundled sample novels."""
