"""
Cluster fan-out.

Single-process and Redis pub/sub implementations of the dispatch bridge.
"""

from lovculator_ws.components.cluster.bridge import (
    ClusterBridge,
    NullClusterBridge,
    RedisClusterBridge,
    create_cluster_bridge,
    generate_node_id,
)

__all__ = [
    "ClusterBridge",
    "NullClusterBridge",
    "RedisClusterBridge",
    "create_cluster_bridge",
    "generate_node_id",
]
