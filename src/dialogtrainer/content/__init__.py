"""Bundled practice packs."""
