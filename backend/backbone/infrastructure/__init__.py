"""Infrastructure Layer — concrete backing-service endpoints and cross-cutting concerns.

Invariants:
    - Infrastructure implements core protocols; it never imports from services/ or api/
    - All driver failures mapped to core error shapes before leaving this layer

Design Decisions:
    - Thin adapters over raw clients (ADR: ExMA single responsibility)
"""
