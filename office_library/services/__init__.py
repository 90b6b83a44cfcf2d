"""Office Library - Services Package

This package contains service modules for external integrations:
- Google Books metadata search
- HTTP client abstraction
"""
