"""Book Finder - Core Application Package

This package contains the core application modules including:
- Catalog normalization (catalog.py)
- Library store (library.py)
- Stats aggregation (stats.py)
- Session management (session.py)
- Notification channel (notifications.py)
- HTTP API (api.py) and CLI (cli.py)
"""

__version__ = "1.0.0"
