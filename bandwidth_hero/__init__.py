"""Bandwidth-saving image compression proxy."""
