"""
Cluster provisioning modules.
"""
from .orchestrator import ClusterOrchestrator
from .readiness import ReadinessCheck, ReadinessProbe
from .secrets import EnvSecretProvider, SecretBundle, SecretProvider, StaticSecretProvider
from .ssh import ConnectionPool, RemoteExecutor, SSHExecutor
from .task import ProvisioningTask
from .topology import ClusterSpec

__all__ = [
    'ClusterOrchestrator',
    'ClusterSpec',
    'ConnectionPool',
    'EnvSecretProvider',
    'ProvisioningTask',
    'ReadinessCheck',
    'ReadinessProbe',
    'RemoteExecutor',
    'SSHExecutor',
    'SecretBundle',
    'SecretProvider',
    'StaticSecretProvider',
]
