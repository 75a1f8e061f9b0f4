"""Gated product description generation."""
