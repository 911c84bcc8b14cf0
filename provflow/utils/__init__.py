from .retry import compute_backoff, fuzz

__all__ = ["compute_backoff", "fuzz"]
