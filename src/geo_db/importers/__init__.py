"""Dump streaming, classification and extraction."""
