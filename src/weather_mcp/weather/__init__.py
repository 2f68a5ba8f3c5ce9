from .nws import NWSClient, create_nws_http_client
from .operations import build_operations, build_registry

__all__ = ["NWSClient", "build_operations", "build_registry", "create_nws_http_client"]
