"""
Utility functions for the fluxcanopy package.
"""
import logging
from pathlib import Path
from typing import Dict

import yaml


def load_yaml(path: Path | str) -> Dict:
    """
    Load a YAML file and return its contents as a dictionary.

    Parameters
    ----------
    path : Path or str
        The path to the YAML file.

    Returns
    -------
    dict
        The contents of the YAML file as a dictionary. An empty file
        yields an empty dictionary.

    Raises
    ------
    FileNotFoundError
        If the specified file does not exist.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with path.open() as fp:
        return yaml.safe_load(fp) or {}


def logger_check(logger: logging.Logger | None) -> logging.Logger:
    """
    Initialize and return a logger instance if none is provided.

    Parameters
    ----------
    logger : logging.Logger or None
        An existing logger instance.

    Returns
    -------
    logging.Logger
        A configured logger instance.
    """
    if logger is None:
        logger = logging.getLogger("fluxcanopy")
        if not logger.handlers:
            logger.setLevel(logging.WARNING)
            ch = logging.StreamHandler()
            ch.setFormatter(
                logging.Formatter(
                    fmt="%(levelname)s [%(asctime)s] %(name)s – %(message)s",
                    datefmt="%Y-%m-%d %H:%M:%S",
                )
            )
            logger.addHandler(ch)
    return logger


__all__ = [
    'load_yaml',
    'logger_check',
]
