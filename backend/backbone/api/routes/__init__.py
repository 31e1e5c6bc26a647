"""Route Modules — diagnostics routers over the running data layer.

Invariants:
    - Each module defines its own APIRouter with prefix and tags
    - Routes only read from or trigger the data layer; they never open channels themselves

Design Decisions:
    - Explicit registration in main.py over auto-discovery (ADR: ExMA anti-pattern)
"""
