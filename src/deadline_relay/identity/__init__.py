"""Channel to owner bindings."""
