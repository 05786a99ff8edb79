import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from .models import WorkerServiceConfig

DEFAULT_CONFIG_PATH = Path(__file__).with_name("default.yaml")
LOCAL_CONFIG_PATH = Path("config/local.yaml")

# Environment variable -> (dotted config path, type)
ENV_OVERRIDES = {
    "REDIS_HOST": ("redis.host", str),
    "REDIS_PORT": ("redis.port", int),
    "REDIS_PASSWORD": ("redis.password", str),
    "DATABASE_URL": ("database.url", str),
    "POSTGRES_HOST": ("database.host", str),
    "POSTGRES_PORT": ("database.port", int),
    "POSTGRES_USER": ("database.user", str),
    "POSTGRES_PASSWORD": ("database.password", str),
    "POSTGRES_DB": ("database.name", str),
    "LIGHT_WORKERS": ("worker.light_workers", int),
    "HEAVY_WORKERS": ("worker.heavy_workers", int),
    "WORKER_TYPE": ("worker.worker_type", str),
    "OUTPUT_DIR": ("worker.output_dir", str),
    "FFMPEG_PATH": ("conversion.ffmpeg_path", str),
    "ENVIRONMENT": ("app.environment", str),
    "LOG_LEVEL": ("app.log_level", str),
}


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML file, returning empty dict if not found."""
    if not path.exists():
        return {}
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def merge_dicts(base: Dict, override: Dict) -> Dict:
    """Recursive merge of two dictionaries."""
    result = base.copy()
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = merge_dicts(result[k], v)
        else:
            result[k] = v
    return result


def env_overrides(environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Build a nested override dict from environment variables.

    Empty values are ignored, as are integer settings that don't parse.
    """
    environ = os.environ if environ is None else environ
    overrides: Dict[str, Any] = {}

    for name, (path, cast) in ENV_OVERRIDES.items():
        raw = environ.get(name)
        if not raw:
            continue
        try:
            value = cast(raw)
        except ValueError:
            continue
        if name == "LOG_LEVEL":
            value = value.upper()

        section, key = path.split(".")
        overrides.setdefault(section, {})[key] = value

    return overrides


def resolve_config(
    cli_args: Dict[str, Any] = None,
    config_path: Optional[Path] = None,
    environ: Optional[Dict[str, str]] = None,
) -> WorkerServiceConfig:
    """
    Resolve config: Default < Local (or --config) < Environment < CLI
    Returns validated Pydantic WorkerServiceConfig model.

    Raises:
        pydantic.ValidationError: the merged configuration is invalid
    """
    cli_args = cli_args or {}
    if environ is None:
        load_dotenv()

    # 1. Load default YAML
    config_data = load_yaml(DEFAULT_CONFIG_PATH)

    # 2. Merge local overrides
    local_data = load_yaml(Path(config_path) if config_path else LOCAL_CONFIG_PATH)
    config_data = merge_dicts(config_data, local_data)

    # 3. Merge environment
    config_data = merge_dicts(config_data, env_overrides(environ))

    # 4. Validate and apply CLI overrides
    config = WorkerServiceConfig.from_dict(config_data)
    return config.merge_cli_overrides(cli_args)
