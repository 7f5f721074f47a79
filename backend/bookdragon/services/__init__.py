"""Services module.

This module provides the service layer architecture:
- exceptions: Custom service exceptions
- categories: Category management (inserts guarded against key-sequence drift)
- books: Per-user book catalogue
- images: Cover image rendering helpers
"""
