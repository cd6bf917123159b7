"""
Library circulation services.

Two cooperating services share this package:

- inventory service: the book catalog and its stock ledger
- borrow service: loans, their state machine and the overdue sweep

Key Components:
- models: Pydantic models and the uniform response envelope
- database: SQLAlchemy schema, sessions and repositories
- clients: capability clients for downstream services, with circuit breakers
- services: borrow workflow engine, catalog operations, overdue sweeper
- api: FastAPI applications of both services
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
