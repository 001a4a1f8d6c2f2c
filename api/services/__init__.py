"""Service layer for certificate rendering.

Services encapsulate the render pipeline, keeping routes thin and focused
on HTTP handling.

Layer hierarchy:
    Routes (HTTP) -> Services (Orchestration) -> Rendering / Storage

Services should:
- Turn per-participant failures into ledger entries
- Own artifact keys and content types
- Talk to storage only through the ObjectStorage protocol

Services should NOT:
- Know about HTTP request/response details
- Draw anything themselves (use the rendering package)
"""
