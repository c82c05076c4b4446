"""Config loading and validation."""

from .schema import (
	AppConfig,
	DEFAULT_CONFIG_PATH,
	load_config,
)

__all__ = [
	"AppConfig",
	"DEFAULT_CONFIG_PATH",
	"load_config",
]
