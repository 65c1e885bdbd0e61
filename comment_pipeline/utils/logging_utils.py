import logging
import logging.config
from pathlib import Path
from typing import Optional

import yaml

from comment_pipeline.config.settings import settings


def setup_logging(config_path: Optional[Path] = None) -> None:
    """
    Set up logging configuration from a YAML file.

    Falls back to ``logging.basicConfig`` when the file is missing or cannot be
    applied, so a broken logging config never prevents the service from starting.

    Args:
        config_path (Path): Path to the logging configuration YAML file.
            Defaults to ``settings.LOGGING_CONFIG_PATH``.
    """
    config_path = config_path or Path(settings.LOGGING_CONFIG_PATH)
    if config_path.exists():
        try:
            with open(config_path, "rt") as f:
                log_config = yaml.safe_load(f.read())
            logging.config.dictConfig(log_config)
            logging.getLogger(__name__).info(f"Logging configured successfully from {config_path}")
        except (OSError, ValueError, TypeError, AttributeError, ImportError, yaml.YAMLError) as e:
            logging.basicConfig(level=logging.INFO)
            logging.getLogger(__name__).error(
                f"Error loading logging configuration from {config_path}: {e}. Using basicConfig."
            )
    else:
        logging.basicConfig(level=logging.INFO)
        logging.getLogger(__name__).warning(
            f"Logging configuration file not found at {config_path}. Using basicConfig."
        )
