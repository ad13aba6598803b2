"""Fraud-protection services."""
