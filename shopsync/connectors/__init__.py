"""
connectors/: outbound API adapters.

One module per remote system. Connectors translate local operations into
remote calls and parse responses; they do no database work.
"""

from .shopify import (  # noqa: F401
    ConnectivityResult,
    LocationLevel,
    RemoteVariant,
    ShopifyClient,
    StoreInventory,
    VariantMatch,
    client_for_store,
)
