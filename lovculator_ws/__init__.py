"""
Lovculator WebSocket Gateway.

Real-time presence and event fan-out over WebSockets, optionally
replicated across processes through a Redis pub/sub backplane.
"""
