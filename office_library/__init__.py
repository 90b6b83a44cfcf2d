"""Office Library - Core Application Package

This package contains the core application modules including:
- API endpoints (api.py)
- Library facade wiring the services together (library.py)
- Loan transition engine (lending.py), loan ledger (ledger.py) and
  book state projector (projector.py)
- Catalog and roster management (catalog.py, roster.py)
- CLI interface (main.py)
- Data models (models.py)
- Database layer (database.py)
"""

__version__ = "1.0.0"
