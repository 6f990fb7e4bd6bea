"""
Global configuration for fftbench.

settings live in a nested dictionary and can be changed at runtime with
configure() or through environment variables prefixed with FFTBENCH_.

Examples:
    fftbench.configure({'capacity': {'device_fraction': 0.9}})
    fftbench.configure(planning_default_strategy='FFTW_MEASURE')

    $ FFTBENCH_THREADING_DEFAULT_THREADS=8 python benchmarks/run_suite.py
"""

import os
import copy
import logging
from typing import Any, Dict

ENV_PREFIX = "FFTBENCH_"

_DEFAULT_CONFIG = {
    'capacity': {
        'device_fraction': 0.95,  # keep headroom, device OOM kills the process
        'host_fraction': 0.95,
        'host_buffer_multiplier': 3,  # upload + download + reference buffers
    },
    'planning': {
        'default_strategy': 'FFTW_ESTIMATE',
    },
    'threading': {
        'default_threads': min(os.cpu_count() or 1, 4),
    },
    'fftw': {
        'wisdom_file': None,
    },
    'pocketfft': {
        'scaling': 'scaled',  # 'unscaled': inverse does not divide by n
    },
    'device': {
        'index': 0,
    },
    'verify': {
        'enabled': True,
        'tolerance_half': 1e-2,
        'tolerance_single': 1e-4,
        'tolerance_double': 1e-10,
    },
    'logging': {
        'level': 'WARNING',
    },
}

_config: Dict[str, Dict[str, Any]] = copy.deepcopy(_DEFAULT_CONFIG)


def _update_nested_dict(d, u):
    """Update nested dictionary recursively."""
    for k, v in u.items():
        if isinstance(v, dict) and k in d and isinstance(d[k], dict):
            _update_nested_dict(d[k], v)
        else:
            d[k] = v


def _apply_configuration():
    """Apply configuration settings that live outside this module."""
    logging.getLogger("fftbench").setLevel(getattr(logging, str(_config['logging']['level']).upper()))


def configure(config_dict=None, **kwargs) -> Dict[str, Dict[str, Any]]:
    """
    Configure fftbench global settings.

    Args:
        config_dict: Dictionary with configuration settings
        **kwargs: Configuration settings as flattened keyword arguments,
            e.g. capacity_device_fraction=0.9

    Returns:
        A copy of the resulting configuration
    """
    if config_dict:
        _update_nested_dict(_config, config_dict)

    for key, value in kwargs.items():
        section, _, name = key.partition('_')
        if section in _config and name in _config[section]:
            _config[section][name] = value
        else:
            raise KeyError(f"Unknown configuration key: {key}")

    _apply_configuration()
    return copy.deepcopy(_config)


def get_config(section: str, key: str) -> Any:
    """Return a single configuration value."""
    return _config[section][key]


def reset_config():
    """Restore the default configuration."""
    _config.clear()
    _config.update(copy.deepcopy(_DEFAULT_CONFIG))
    _apply_configuration()


def _parse_env_value(value: str) -> Any:
    # same coercion rules for every variable: bool, int, float, else string
    if value.lower() in ('true', 'yes', 'on'):
        return True
    if value.lower() in ('false', 'no', 'off'):
        return False
    for convert in (int, float):
        try:
            return convert(value)
        except ValueError:
            pass
    return value


def load_env_config(environ=None):
    """Load configuration from environment variables."""
    environ = os.environ if environ is None else environ
    settings = {}
    for key, value in environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        config_key = key[len(ENV_PREFIX):].lower()
        section, _, name = config_key.partition('_')
        if section in _config and name in _config[section]:
            settings[config_key] = _parse_env_value(value)
        else:
            logging.getLogger("fftbench.config").warning(f"Ignoring unknown setting {key}")
    if settings:
        configure(**settings)
