"""
castctl - Cast receiver discovery and control.

Finds receivers over multicast DNS and drives the cast control channel to
launch the default media receiver and load media.
"""

__version__ = "0.1.0"

from .config import Config, ConfigError, load_config
from .controller import CastController, CastSession

__all__ = [
    "__version__",
    "CastController",
    "CastSession",
    "Config",
    "load_config",
    "ConfigError",
]
