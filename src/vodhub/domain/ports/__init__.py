from .cache import ResultCachePort
from .events import EventPublisherPort
from .invoker import IDEMPOTENT_METHODS, InvokeRequest, InvokeResponse, InvokerPort
from .plugin import PluginLoaderPort, SitePluginPort
from .registry import SiteRegistryPort
from .store import KeyValueStorePort

__all__ = [
    "IDEMPOTENT_METHODS",
    "EventPublisherPort",
    "InvokeRequest",
    "InvokeResponse",
    "InvokerPort",
    "KeyValueStorePort",
    "PluginLoaderPort",
    "ResultCachePort",
    "SitePluginPort",
    "SiteRegistryPort",
]
