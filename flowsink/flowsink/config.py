"""
Configuration loader for flowsink.yaml files.
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .sink import DEFAULT_HIGH_WATER_MARK, DEFAULT_MAX_WRITE_BYTES, SinkConfig

CONFIG_FILENAME = "flowsink.yaml"

DEFAULT_CONFIG = f'''# flowsink configuration

sink:
  high_water_mark: {DEFAULT_HIGH_WATER_MARK}   # bytes buffered before the producer must pause
  coalesce: true           # join adjacent queued chunks into one write
  max_write_bytes: {DEFAULT_MAX_WRITE_BYTES}   # upper bound for a coalesced write

bench:
  count: 1000000
  strategies:
    - awaited
    - sync
    - streamed
  output_dir: ./bench-output
'''


class FlowConfig:
    """Configuration loaded from flowsink.yaml"""

    def __init__(self, config_dict: Dict[str, Any], path: Optional[Path] = None):
        self._config = config_dict
        self.path = path

    def sink_config(self) -> SinkConfig:
        """Build a SinkConfig from the sink section, falling back to env defaults."""
        base = SinkConfig.from_env()
        sink = self._config.get('sink', {}) or {}
        return SinkConfig(
            high_water_mark=int(sink.get('high_water_mark', base.high_water_mark)),
            coalesce=bool(sink.get('coalesce', base.coalesce)),
            max_write_bytes=int(sink.get('max_write_bytes', base.max_write_bytes)),
        ).validate()

    @property
    def _bench(self) -> Dict[str, Any]:
        return self._config.get('bench') or {}

    @property
    def bench_count(self) -> int:
        """Number of chunks written per benchmark strategy"""
        return int(self._bench.get('count', 1_000_000))

    @property
    def bench_strategies(self) -> List[str]:
        return list(self._bench.get('strategies', []))

    @property
    def bench_output_dir(self) -> Path:
        return Path(self._bench.get('output_dir', './bench-output'))

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value by key"""
        return self._config.get(key, default)


def load_config(config_path: Optional[str] = None) -> FlowConfig:
    """
    Load configuration from flowsink.yaml.

    Search order:
    1. Provided config_path
    2. FLOWSINK_CONFIG environment variable
    3. ./flowsink.yaml in current directory
    4. flowsink.yaml in parent directories (walk up the tree)

    Args:
        config_path: Optional explicit path to config file

    Returns:
        FlowConfig instance

    Raises:
        FileNotFoundError: If an explicit or env path does not exist
    """
    if config_path:
        return _load_from_path(Path(config_path))

    env_path = os.environ.get('FLOWSINK_CONFIG')
    if env_path:
        return _load_from_path(Path(env_path))

    current = Path.cwd()
    while True:
        config_file = current / CONFIG_FILENAME
        if config_file.exists():
            return _load_from_path(config_file)

        # Stop at filesystem root
        if current == current.parent:
            break
        current = current.parent

    # No config found, return default empty config
    return FlowConfig({})


def _load_from_path(path: Path) -> FlowConfig:
    """Load config from a specific path"""
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping")
    return FlowConfig(data, path=path)
