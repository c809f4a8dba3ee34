"""
Settings for the APS clients, translation output and result directories.

Defaults live in the packaged ``config/config.yaml``. Secrets and endpoints
are pulled from the environment (and a local ``.env`` file) through
``${oc.env:...}`` interpolation when a value is first accessed.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping, Optional

from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf

load_dotenv()

PACKAGED_CONFIG = Path(__file__).resolve().parent / "config" / "config.yaml"
CONFIG_FILE_ENV = "MODEL_DERIVATIVE_CONFIG"


def config_file() -> Path:
    """Return the YAML file holding the defaults; ``MODEL_DERIVATIVE_CONFIG`` replaces the packaged one."""
    override = os.environ.get(CONFIG_FILE_ENV)
    path = Path(override) if override else PACKAGED_CONFIG
    if not path.is_file():
        raise FileNotFoundError(f"Settings file not found at {path}")
    return path


@lru_cache(maxsize=4)
def _read_defaults(path: Path) -> DictConfig:
    return OmegaConf.load(path)


def make_settings(overrides: Optional[Mapping[str, Any]] = None) -> DictConfig:
    """
    Merge ``overrides`` onto a fresh copy of the defaults.

    The defaults are locked in struct mode, so an override naming a key the
    defaults do not declare raises ``omegaconf.errors.ConfigKeyError``.
    Interpolations stay unresolved until read.
    """
    defaults = OmegaConf.create(OmegaConf.to_container(_read_defaults(config_file()), resolve=False))
    OmegaConf.set_struct(defaults, True)
    return DictConfig(OmegaConf.merge(defaults, OmegaConf.create(dict(overrides or {}))))


@lru_cache(maxsize=1)
def load_settings() -> DictConfig:
    return make_settings()
