"""
dbkit: thin convenience wrappers over a relational database and a key-value store.

Two independent components:
1. ``dbkit.database`` - CRUD SQL generation from column mappings, transactions
   and pooled connections on top of SQLAlchemy
2. ``dbkit.cache`` - typed command wrappers for strings, keys and expirations
   on top of the Valkey client
"""

__version__ = "0.1.0"
