"""Apply Kubernetes manifests in undefined order, retrying until they converge."""

__version__ = "0.1.0"
