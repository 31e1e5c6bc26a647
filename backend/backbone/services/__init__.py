"""Services Layer — connection monitor, query executor, subscription manager, and their wiring.

Invariants:
    - Services depend on core protocols, never on concrete infrastructure
      (data_layer.py is the single composition root that does)
    - Every suspension point is an awaitable that cancellation can interrupt

Design Decisions:
    - One component per file (ADR: ExMA no god objects)
"""
