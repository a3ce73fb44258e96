from pathlib import Path
from typing import Any, Dict, Union

import yaml


def load_config(config_file: Union[str, Path]) -> Dict[str, Any]:
    """Loads the YAML configuration file."""
    path = Path(config_file)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found at {path}")
    with open(path, "r") as f:
        config = yaml.safe_load(f)
    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ValueError(f"Configuration file {path} must contain a mapping at the top level.")
    return config
