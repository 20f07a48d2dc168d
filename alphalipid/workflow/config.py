"""Configuration of an alphalipid run.

The default configuration shipped in `constants/default.yaml` is updated with one or more user configurations.
Configurations later in the sequence overwrite earlier values, lists are always overwritten completely.
New keys and changes of value types are rejected.

On demand, the resulting config is logged as a tree with all values that differ from the default highlighted.
"""

import json
import logging
import os
from collections import UserDict, defaultdict
from copy import deepcopy

import yaml

from alphalipid.constants.keys import ConfigKeys
from alphalipid.exceptions import KeyAddedConfigError, TypeMismatchConfigError

logger = logging.getLogger()

DEFAULT = "default"
USER_DEFINED = "user defined"
USER_DEFINED_CLI_PARAM = "user defined (cli)"

DEFAULT_CONFIG_PATH = os.path.join(
    os.path.dirname(os.path.dirname(__file__)), "constants", "default.yaml"
)


class Config(UserDict):
    """Dict-like config that reads from and writes to yaml and json files and can be updated with other configs."""

    def __init__(self, data: dict = None, name: str = DEFAULT) -> None:
        # UserDict.__init__ would call our update()
        self.data = {**data} if data is not None else {}
        self.name = name

    def from_yaml(self, path: str) -> None:
        with open(path) as f:
            self.data = yaml.safe_load(f) or {}

    def from_json(self, path: str) -> None:
        with open(path) as f:
            self.data = json.load(f)

    def from_dict(self, data: dict) -> None:
        self.data = deepcopy(data)

    def to_yaml(self, path: str) -> None:
        with open(path, "w") as f:
            yaml.dump(self.data, f, sort_keys=False)

    def to_json(self, path: str) -> None:
        with open(path, "w") as f:
            json.dump(self.data, f)

    def to_dict(self) -> dict:
        return deepcopy(self.data)

    def __setitem__(self, key, item):
        if key != ConfigKeys.OUTPUT_DIRECTORY:
            raise NotImplementedError("Use update() to update the config.")
        return super().__setitem__(key, item)

    def __delitem__(self, key):
        raise NotImplementedError("Use update() to update the config.")

    def copy(self):
        raise NotImplementedError("Use deepcopy() to copy the config.")

    def update(self, configs: list["Config"], do_print: bool = False):
        """Update the config with one or more other config objects.

        All changes to the current values are tracked so that they can be visualized.

        Parameters
        ----------
        configs : list of Config
            Configs to update the current config with, the last one wins.

        do_print : bool, optional
            Whether to log the resulting config. Default is False.
        """
        default_config = deepcopy(self.data)

        def _recursive_defaultdict():
            return defaultdict(_recursive_defaultdict)

        tracking_dict = defaultdict(_recursive_defaultdict)

        current_config = deepcopy(self.data)
        for config in configs:
            logger.info(f"Updating config with '{config.name}'")
            _update(current_config, config.data, tracking_dict, config.name)

        self.data = current_config

        if do_print:
            try:
                _pretty_print(
                    current_config,
                    default_config=default_config,
                    tracking_dict=tracking_dict,
                )
            except Exception as e:
                logger.warning(f"Could not print config: {e}")
                logger.info(f"{(yaml.dump(current_config))}")


def load_default_config() -> Config:
    """Load the default configuration shipped with alphalipid."""
    config = Config(name=DEFAULT)
    config.from_yaml(DEFAULT_CONFIG_PATH)
    return config


def _update(
    target_config: dict,
    update_config: dict,
    tracking_dict: dict,
    config_name: str,
    parent_keys: str = "",
) -> None:
    """Recursively update `target_config` in-place with the values of `update_config`.

    Every overwritten value is marked with `config_name` in `tracking_dict`.

    Raises
    ------
    KeyAddedConfigError
        A key of `update_config` is not present in `target_config`.
    TypeMismatchConfigError
        The type of an update value does not match the type of the target value.
    """
    for key, update_value in update_config.items():
        full_key = f"{parent_keys}.{key}" if parent_keys else key

        if key not in target_config:
            raise KeyAddedConfigError(full_key, update_value, config_name)

        target_value = target_config[key]

        # values from --config-dict arrive as strings
        if isinstance(update_value, str) and update_value.lower() in ("true", "false"):
            update_value = update_value.lower() == "true"

        if (
            target_value is not None
            and type(target_value) != type(update_value)
            and not (
                isinstance(target_value, int | float)
                and isinstance(update_value, int | float)
            )
        ):
            raise TypeMismatchConfigError(
                full_key,
                update_value,
                config_name,
                f"{type(update_value)} != {type(target_value)}",
            )

        if isinstance(target_value, dict):
            _update(
                target_value,
                update_value,
                tracking_dict[key],
                config_name,
                parent_keys=full_key,
            )
        else:
            target_config[key] = update_value
            tracking_dict[key] = config_name


def _pretty_print(
    config: dict,
    *,
    default_config: dict | None,
    tracking_dict: dict | str,
    prefix: str = "",
):
    """Recursively log a configuration dictionary as a tree."""
    for i, (key, value) in enumerate(config.items()):
        is_last_item = i == len(config) - 1
        current_prefix = "└──" if is_last_item else "├──"
        next_prefix = prefix + ("    " if is_last_item else "│   ")

        default_value = (
            default_config.get(key) if isinstance(default_config, dict) else None
        )
        tracking_value = (
            tracking_dict if isinstance(tracking_dict, str) else tracking_dict[key]
        )

        if isinstance(value, dict):
            logger.info(f"{prefix}{current_prefix}{key}")
            _pretty_print(
                value,
                default_config=default_value,
                tracking_dict=tracking_value,
                prefix=next_prefix,
            )
        elif isinstance(value, list):
            logger.info(f"{prefix}{current_prefix}{key}:")
            color_on, color_off = _get_color_tokens(value, default_value)
            for item in value:
                logger.info(f"{next_prefix}{color_on}- {item}{color_off}")
        else:
            color_on, color_off = _get_color_tokens(value, default_value)
            logger.info(
                f"{prefix}{color_on}{current_prefix}{key}: {_expand(value, default_value, tracking_value)}{color_off}"
            )


def _get_color_tokens(actual_value, default_value) -> tuple[str, str]:
    """Get color on/off tokens if values differ, else empty strings."""
    if default_value != actual_value:
        return "\x1b[32;20m", "\x1b[0m"
    return "", ""


def _expand(actual_value, default_value, tracking_value) -> str:
    """Create an expanded string representation of a value in case it differs from the default."""
    if default_value != actual_value:
        return f"{actual_value} [{tracking_value}, default: {default_value}]"
    return str(actual_value)
