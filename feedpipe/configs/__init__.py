from .config import Config, Secrets

__all__ = ["Config", "Secrets"]
