import logging
import yaml
from pathlib import Path

logger = logging.getLogger("yaml_loader")


def load_yaml_config(filepath: Path) -> dict:
    """
    Loads configuration data from a YAML file.

    Args:
        filepath (Path): The path object pointing to the YAML configuration file.

    Returns:
        dict: The loaded configuration as a dictionary.

    Raises:
        FileNotFoundError: If the config file does not exist.
        yaml.YAMLError: If there is an issue parsing the YAML content.
        ValueError: If the top level of the file is not a mapping.
    """
    filepath = Path(filepath)
    if not filepath.exists():
        raise FileNotFoundError(f"Configuration file not found at: {filepath}")

    try:
        with open(filepath, 'r') as f:
            config_data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger.error(f"Error parsing YAML file {filepath}: {e}")
        raise
    except IOError as e:
        logger.error(f"Error reading config file {filepath}: {e}")
        raise

    if config_data is None:
        return {}
    if not isinstance(config_data, dict):
        raise ValueError(f"Configuration in {filepath} must be a mapping, got {type(config_data).__name__}")
    return config_data


def get_section(config: dict, section: str) -> dict:
    """Return a config section as a dict, empty when missing or null."""
    value = config.get(section)
    return value if isinstance(value, dict) else {}
