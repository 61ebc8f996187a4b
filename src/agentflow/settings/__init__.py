from .settings import CliSettings, Settings

__all__ = ["Settings", "CliSettings"]
