"""Personal finance ledger - Backend.

A REST API over a relational store:
- Accounts sign in and receive short-lived JWT session tokens.
- Bills and categories are always filtered by the owning account.
- Default categories are shared by everyone and cannot be changed.

See DESIGN.md for layout and design decisions.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
