"""
Shared utilities for Biomedical Graph Assistant services.
"""

from services.shared.config import Settings, get_settings
from services.shared.logging import configure_logging, get_logger
from services.shared.graph import Neo4jGraphClient, get_graph_client, init_graph, close_graph

__all__ = [
    "Settings",
    "get_settings",
    "configure_logging",
    "get_logger",
    "Neo4jGraphClient",
    "get_graph_client",
    "init_graph",
    "close_graph",
]
