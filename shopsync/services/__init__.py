"""Business logic between the routers and the database / Shopify connector."""
