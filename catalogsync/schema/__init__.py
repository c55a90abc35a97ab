"""Typed manifest/schema models and their YAML loaders."""
