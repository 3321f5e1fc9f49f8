"""Live-view cache for clusterupdater.

Mirrors the watched ClusterVersion resource locally via list+watch so the
reconciler can read it synchronously once per cycle.

Submodules:
    reflector   -- List+watch mirror of the ClusterVersion singleton.
"""

from clusterupdater.cache.reflector import CacheError, ClusterVersionReflector

__all__ = ["CacheError", "ClusterVersionReflector"]
