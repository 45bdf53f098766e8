#!/usr/bin/env python3
# secure_ws/client_config.py
"""
Client Configuration Module

Loads and validates secure client configurations from YAML files and turns
them into the connection options and headers the client entry points take.
"""
import os
import yaml
import logging
from typing import Dict, Any, List, Tuple

from secure_ws.websocket.options import ConnectionOptions, SUPPORTED_COMPRESSION

DEFAULT_PORT = 443
DEFAULT_PATH = '/'

logger = logging.getLogger('client-config')


class ClientConfig:
    """
    Manages client configuration from YAML files.

    Provides static methods for loading, validating, and converting
    configuration values.
    """

    @staticmethod
    def load_config(config_file: str) -> Dict[str, Any]:
        """
        Load configuration from a YAML file.

        Only 'host' is required; 'port' and 'path' get defaults.
        """
        if not os.path.exists(config_file):
            raise FileNotFoundError(f"Config file not found: {config_file}")

        try:
            with open(config_file, 'r') as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Error parsing config file: {e}")

        if not isinstance(config, dict):
            raise ValueError("Configuration must be a dictionary")

        if 'host' not in config:
            raise ValueError("Missing required config fields: host")

        if 'port' not in config:
            config['port'] = DEFAULT_PORT
            logger.info(f"Using default port: {DEFAULT_PORT}")
        if 'path' not in config:
            config['path'] = DEFAULT_PATH
            logger.info(f"Using default path: {DEFAULT_PATH}")

        port = config['port']
        if not isinstance(port, int) or isinstance(port, bool) or port < 1 or port > 65535:
            raise ValueError(f"Invalid port number: {port}. Must be between 1 and 65535.")

        return config

    @staticmethod
    def validate_config(config: Dict[str, Any]) -> None:
        """
        Validate a configuration dictionary.
        """
        host = config.get('host')
        if not isinstance(host, str) or not host:
            raise ValueError(f"Invalid host: {host!r}")

        path = config.get('path', DEFAULT_PATH)
        if not isinstance(path, str) or not path.startswith('/'):
            raise ValueError(f"Invalid path: {path!r}. Must start with '/'")

        for numeric_field in ['max_size', 'open_timeout', 'close_timeout']:
            if config.get(numeric_field) is not None:
                value = config[numeric_field]
                if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                    raise ValueError(f"{numeric_field} must be a positive number")

        compression = config.get('compression')
        if compression not in SUPPORTED_COMPRESSION:
            raise ValueError(f"Unsupported compression: {compression}. Supported: deflate or none")

        subprotocols = config.get('subprotocols')
        if subprotocols is not None and (
            not isinstance(subprotocols, list) or not all(isinstance(s, str) for s in subprotocols)
        ):
            raise ValueError("subprotocols must be a list of strings")

        # Raises on malformed entries
        ClientConfig.headers_from_config(config)

    @staticmethod
    def headers_from_config(config: Dict[str, Any]) -> List[Tuple[str, str]]:
        """
        Extra handshake headers from the 'headers' key.

        Accepts either a mapping of name to value or a list of
        {name: ..., value: ...} entries (which allows repeated names).
        """
        headers = config.get('headers')
        if headers is None:
            return []
        if isinstance(headers, dict):
            return [(str(name), str(value)) for name, value in headers.items()]
        if isinstance(headers, list):
            pairs = []
            for entry in headers:
                if not isinstance(entry, dict) or 'name' not in entry or 'value' not in entry:
                    raise ValueError(f"Invalid header entry: {entry!r}. Expected 'name' and 'value'")
                pairs.append((str(entry['name']), str(entry['value'])))
            return pairs
        raise ValueError("headers must be a mapping or a list of name/value entries")

    @staticmethod
    def options_from_config(config: Dict[str, Any]) -> ConnectionOptions:
        """
        Build ConnectionOptions, keeping library defaults for absent keys.
        """
        fields = ['compression', 'max_size', 'origin', 'subprotocols',
                  'user_agent', 'open_timeout', 'close_timeout']
        kwargs = {}
        for field in fields:
            if field in config:
                kwargs[field] = config[field]
                logger.debug(f"Set connection option {field} = {config[field]}")
        return ConnectionOptions(**kwargs)

    @staticmethod
    def save_config(config: Dict[str, Any], filename: str) -> None:
        """
        Save configuration to a YAML file.
        """
        try:
            with open(filename, 'w') as f:
                yaml.dump(config, f, default_flow_style=False)
            logger.info(f"Configuration saved to {filename}")
        except IOError as e:
            logger.error(f"Error saving configuration to {filename}: {e}")
            raise

    @staticmethod
    def create_default_config(host: str) -> Dict[str, Any]:
        """
        Create a default configuration dictionary.
        """
        return {
            'host': host,
            'port': DEFAULT_PORT,
            'path': DEFAULT_PATH,
            'compression': None,
            'close_timeout': 10,
            'headers': [],
        }
