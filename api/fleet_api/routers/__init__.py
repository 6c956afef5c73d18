"""API routers for the fleet control plane."""
