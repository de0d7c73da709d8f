"""
WebSocket Gateway Components.

Organized into domain-specific modules:
- core/       - Foundational components (constants, connection model)
- connection/ - Registry, presence, heartbeat, rate limiting
- events/     - Frame types and the inbound event router
- broadcast/  - Local delivery to open connections
- cluster/    - Cross-process fan-out over the backplane
- auth/       - Authentication strategies (session cookie)
- endpoints/  - WebSocket endpoint handler
- resilience/ - Fault tolerance (circuit breaker, retry)
- metrics/    - Prometheus exposition
- data/       - Data access (sessions, conversation participants)

Import from the specific submodules.
"""
