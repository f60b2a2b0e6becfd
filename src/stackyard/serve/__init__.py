"""Control-plane HTTP server for Stackyard."""
