"""Book Finder - Services Package

This package contains service modules for external integrations:
- Google Books catalog search
- Cover image relay
- Cache management service
- HTTP client abstraction
"""
