"""Small shared helpers."""
from callreplay.utils.retry import retry_async

__all__ = ["retry_async"]
