"""
Graph — dependency-driven computation with auto-parallelization.

    from trainfood import graph as G

    @G.node
    class ProductsNode:
        @classmethod
        async def __compose__(cls, valid: ValidatedNode, deps: CheckoutDeps) -> "ProductsNode":
            return cls(await deps.catalog.find_products_by_ids(valid.product_ids))

    quote = G.pipeline(QuoteNode)
    result = await quote(draft, deps)
"""

from nodnod import scalar_node as node

from trainfood.graph._pipeline import (
    TypedScope,
    Pipeline,
    pipeline,
)

__all__ = (
    "node",
    "TypedScope",
    "Pipeline",
    "pipeline",
)
