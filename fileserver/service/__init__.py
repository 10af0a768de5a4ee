"""Request-level use-cases sitting between the routes and the domain."""
