#!/usr/bin/env python3
# -*- coding: utf-8 -*-
import copy
import json
import logging
import sys

import yaml


DEFAULT_CONFIG = {
    'nats': {
        'url': 'nats://localhost:4222',
        'max_reconnect_attempts': -1,
        'reconnect_delay': 2,
        'connection_timeout': 5,
    },
    'logging': {
        'level': 'info',
        'file': None,
    },
    'respawn': {
        'data_dir': 'data',
        'default_cooldown_hours': 2,
        'max_cooldown_hours': 720,
        'warning_minutes': [15, 5],
        'stale_policy': 'fire',
        'status_interval': 3600,
        'timezone': 'UTC',
        'emit_events': True,
    },
}

LOG_FORMAT = '[%(asctime).19s] [%(name)s] [%(levelname)s] %(message)s'


class RobustFileHandler(logging.FileHandler):
    """FileHandler that gracefully handles flush errors on Windows"""

    def flush(self):
        """Flush the stream, catching OSError on Windows file handles"""
        try:
            super().flush()
        except OSError as e:
            # EINVAL from a half-closed handle on Windows
            if e.errno != 22:
                raise


def configure_logger(logger,
                     log_file=None,
                     log_format=None,
                     log_level=logging.INFO):
    """Configure a logger with a file or stream handler

    Args:
        logger: Logger instance or logger name string
        log_file: File path string or file-like object (None for stderr)
        log_format: Format string for log messages
        log_level: Logging level (e.g., logging.INFO, logging.DEBUG)

    Returns:
        Configured logger instance
    """
    if isinstance(log_file, str):
        handler = RobustFileHandler(
            log_file,
            mode='a',
            encoding='utf-8',
            errors='replace'
        )
    else:
        handler = logging.StreamHandler(log_file)

    formatter = logging.Formatter(log_format)

    if isinstance(logger, str):
        logger = logging.getLogger(logger)

    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.setLevel(log_level)

    return logger


def parse_log_level(name):
    """Map a level name like 'debug' to a logging constant (INFO if unknown)"""
    level = getattr(logging, str(name).upper(), None)
    return level if isinstance(level, int) else logging.INFO


def merge_defaults(conf, defaults=DEFAULT_CONFIG):
    """Return conf with missing keys filled from defaults (one level of nesting)

    Args:
        conf: Configuration dictionary read from file
        defaults: Default configuration

    Returns:
        New dictionary; conf is not modified
    """
    merged = copy.deepcopy(defaults)
    for key, value in (conf or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key].update(value)
        else:
            merged[key] = value
    return merged


def load_config(config_file):
    """Load configuration from a JSON or YAML file

    Args:
        config_file: Path ending in .json, .yaml or .yml

    Returns:
        Configuration dictionary with defaults applied

    Raises:
        OSError: If the file cannot be read
        ValueError: If the file is not valid JSON/YAML or not a mapping
    """
    with open(config_file, 'r', encoding='utf-8') as fp:
        if str(config_file).endswith(('.yaml', '.yml')):
            try:
                conf = yaml.safe_load(fp)
            except yaml.YAMLError as e:
                raise ValueError(f'Invalid YAML in {config_file}: {e}') from e
        else:
            conf = json.load(fp)

    if conf is None:
        conf = {}
    if not isinstance(conf, dict):
        raise ValueError(f'{config_file} must contain a mapping at the top level')

    return merge_defaults(conf)


def setup_logging(conf):
    """Configure root logging from the 'logging' config section

    Args:
        conf: Configuration dictionary (after load_config)

    Returns:
        The root logger
    """
    logging_config = conf.get('logging', {})
    log_level = parse_log_level(logging_config.get('level', 'info'))

    root = logging.getLogger()
    configure_logger(
        root,
        log_file=logging_config.get('file'),
        log_format=LOG_FORMAT,
        log_level=log_level,
    )
    return root


def get_config(argv=None):
    """Load configuration from the file named on the command line

    Args:
        argv: Argument list (defaults to sys.argv); argv[1] is the config
              path, 'config.json' when omitted

    Returns:
        Configuration dictionary with defaults applied

    Exits:
        Exits with status 1 on bad usage or an unreadable config file
    """
    argv = sys.argv if argv is None else argv
    if len(argv) > 2:
        print('usage: %s [config file]' % argv[0], file=sys.stderr)
        sys.exit(1)

    config_file = argv[1] if len(argv) == 2 else 'config.json'

    try:
        return load_config(config_file)
    except (OSError, ValueError) as e:
        print(f'ERROR: Could not load {config_file}: {e}', file=sys.stderr)
        sys.exit(1)
