"""Built-in tools and the tool registry."""
