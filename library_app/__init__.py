"""Library App - Circulation Service Package

This package contains the application modules:
- Loan lifecycle (loan.py, loans.py) and copy ledger (inventory.py)
- Catalog management (library.py)
- Data models (book.py, models.py)
- Database layer (database.py)
- API endpoints (api.py)
- CLI interface (main.py)
"""
