"""Generate and patch Kubernetes manifests for CSI driver operators.

Holds the generator configuration types, YAML patching with history, the asset
generator, shared and per-driver configurations, Deployment hooks and Cinder
configuration helpers.
"""

__version__ = "0.1.0"