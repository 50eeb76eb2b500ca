"""Service layer: the sync orchestrator and the read-side views."""
