"""Instance group resource model, validation, metrics and reconcile flow."""

__version__ = "0.1.0"
__all__ = ["api", "bootstrap", "deployer", "metrics", "utils", "validation"]