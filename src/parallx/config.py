"""Configuration system using platformdirs for cross-platform paths."""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import platformdirs

APP_NAME = "parallx"
APP_AUTHOR = "parallx"


@dataclass
class Config:
	"""Central configuration with XDG/platform conventions."""

	config_dir: Path = field(default_factory=lambda: Path(platformdirs.user_config_dir(APP_NAME)))
	data_dir: Path = field(default_factory=lambda: Path(platformdirs.user_data_dir(APP_NAME)))

	# Derived paths
	reports_db_path: Path = field(init=False)
	log_dir: Path = field(init=False)

	# Scheduling
	max_depth: int = 2
	max_concurrency: int = 8
	task_timeout: Optional[float] = None

	# Agent runtime and verification
	agent_command: Optional[str] = None
	agent_timeout: float = 1800
	verify_command: Optional[str] = None
	verify_timeout: float = 600

	log_level: str = "INFO"

	def __post_init__(self) -> None:
		self.reports_db_path = self.data_dir / "reports.db"
		self.log_dir = self.data_dir / "logs"

	def ensure_dirs(self) -> None:
		"""Create all required directories."""
		self.config_dir.mkdir(parents=True, exist_ok=True)
		self.data_dir.mkdir(parents=True, exist_ok=True)
		self.log_dir.mkdir(parents=True, exist_ok=True)


PATH_FIELDS = {"config_dir", "data_dir"}
INT_FIELDS = {"max_depth", "max_concurrency"}
FLOAT_FIELDS = {"task_timeout", "agent_timeout", "verify_timeout"}


def _coerce(attr: str, val):
	"""Convert a raw env/toml value to the field's type."""
	if attr in PATH_FIELDS:
		return Path(os.path.expanduser(str(val)))
	if attr in INT_FIELDS:
		return int(val)
	if attr in FLOAT_FIELDS:
		return float(val)
	return val


def _apply_env_overrides(config: Config) -> Config:
	"""Apply PARALLX_* environment variable overrides."""
	env_map = {
		"PARALLX_CONFIG_DIR": "config_dir",
		"PARALLX_DATA_DIR": "data_dir",
		"PARALLX_MAX_DEPTH": "max_depth",
		"PARALLX_MAX_CONCURRENCY": "max_concurrency",
		"PARALLX_TASK_TIMEOUT": "task_timeout",
		"PARALLX_AGENT_COMMAND": "agent_command",
		"PARALLX_AGENT_TIMEOUT": "agent_timeout",
		"PARALLX_VERIFY_COMMAND": "verify_command",
		"PARALLX_VERIFY_TIMEOUT": "verify_timeout",
		"PARALLX_LOG_LEVEL": "log_level",
	}
	for env_key, attr in env_map.items():
		val = os.getenv(env_key)
		if val:
			setattr(config, attr, _coerce(attr, val))
	# Recompute derived paths after overrides
	config.__post_init__()
	return config


def _apply_toml(config: Config) -> Config:
	"""Apply config.toml overrides if file exists."""
	toml_path = config.config_dir / "config.toml"
	if not toml_path.exists():
		return config

	with open(toml_path, "rb") as f:
		data = tomllib.load(f)

	for key, val in data.items():
		if key in ("reports_db_path", "log_dir"):
			continue
		if hasattr(config, key):
			setattr(config, key, _coerce(key, val))

	# Recompute derived paths after toml overrides
	config.__post_init__()
	return config


def load_config() -> Config:
	"""Load config with precedence: env vars > config.toml > defaults."""
	config = Config()
	# Env first so PARALLX_CONFIG_DIR decides which config.toml is read
	config = _apply_env_overrides(config)
	config = _apply_toml(config)
	config = _apply_env_overrides(config)
	config.ensure_dirs()
	return config


# Singleton
_config: Config | None = None


def get_config() -> Config:
	"""Get or create the global config instance."""
	global _config
	if _config is None:
		_config = load_config()
	return _config
