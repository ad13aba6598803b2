"""Core configuration, security primitives and application wiring."""
