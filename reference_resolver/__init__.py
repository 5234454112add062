"""Reference Resolver - product and department classification lookups.

Usage:
    from reference_resolver import ReferenceResolver, ReferenceServiceClient

    async with ReferenceServiceClient(config.reference_base_url) as client:
        resolver = ReferenceResolver(client, batch_size=config.lookup_batch_size)
        products = await resolver.resolve_products(item_codes)
"""

from reference_resolver.client import (
    ReferenceServiceClient,
    ReferenceServiceError,
    parse_product,
    parse_department,
)
from reference_resolver.resolver import ReferenceLookup, ReferenceResolver

__all__ = [
    # Client
    "ReferenceServiceClient",
    "ReferenceServiceError",
    "parse_product",
    "parse_department",
    # Resolver
    "ReferenceLookup",
    "ReferenceResolver",
]
