"""Bill-of-materials resolvers."""
