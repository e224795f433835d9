from .client import ProviderClient, APIResponse, APIResult, get_provider_client, close_provider_client
from .config import provider_config, ProviderConfig

__all__ = [
    "ProviderClient",
    "APIResponse",
    "APIResult",
    "get_provider_client",
    "close_provider_client",
    "provider_config",
    "ProviderConfig",
]
