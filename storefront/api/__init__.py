# api/__init__.py
from storefront.api.container import (
    Services,
    build_in_memory_services,
    build_services,
)

__all__ = [
    "Services",
    "build_in_memory_services",
    "build_services",
]
