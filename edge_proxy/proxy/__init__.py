from .forwarder import ProxyForwarder
from .middleware import ProxyMiddleware
from .path_classifier import PathClassification, classify_path

__all__ = [
    "ProxyForwarder",
    "ProxyMiddleware",
    "PathClassification",
    "classify_path",
]
