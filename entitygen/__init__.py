"""entitygen -- CRUD source scaffolding from database table metadata."""

__version__ = "0.1.0"
