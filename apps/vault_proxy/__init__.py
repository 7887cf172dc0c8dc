"""Vault proxy service: configuration, operation pipeline and startup wiring."""
