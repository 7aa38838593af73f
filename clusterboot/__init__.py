"""clusterboot - bootstrap a k3s master and its workers across SSH-reachable hosts."""

__version__ = "0.1.0"
