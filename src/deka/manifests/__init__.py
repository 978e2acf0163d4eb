"""Reading target objects from YAML manifests."""
