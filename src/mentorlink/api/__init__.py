from .client import ApiError, BackendClient

__all__ = ["ApiError", "BackendClient"]
