"""tether - stream agent turns into chat threads."""

from tether.app import AppRuntime
from tether.config import Settings, load_settings
from tether.redact import SecretMasker

__version__ = "0.1.0"

__all__ = ["AppRuntime", "SecretMasker", "Settings", "load_settings"]
