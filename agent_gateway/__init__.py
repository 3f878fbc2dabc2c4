# agent_gateway/__init__.py
# Öffentliche Schnittstelle des Gateways
from .agent_client import AgentClient
from .directory import EnvCredentialResolver, EnvProviderDirectory, ProviderDirectory
from .error_tracker import ErrorTracker
from .errors import ErrorKind, GatewayError, ParseFailure
from .gateway import GatewayClient

__version__ = "1.0.0"

__all__ = [
    "AgentClient",
    "EnvCredentialResolver",
    "EnvProviderDirectory",
    "ErrorKind",
    "ErrorTracker",
    "GatewayClient",
    "GatewayError",
    "ParseFailure",
    "ProviderDirectory",
]
