"""
Shared infrastructure for the Lovculator real-time gateway.

Submodules:
- config: Settings and structured logging
- infrastructure: Redis pool, database engine, correlation ids
"""
