"""XR Studio - activity documents on MongoDB or embedded SQLite."""

__version__ = "0.1.0"
