from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict

from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf

# Load environment variables from .env file before any ${oc.env:...} lookup
load_dotenv()

CONFIG_PATH = Path(__file__).resolve().with_name("config.yaml")


@lru_cache(maxsize=1)
def _load_default_config() -> DictConfig:
    if not CONFIG_PATH.exists():
        raise FileNotFoundError(f"Default config not found at {CONFIG_PATH}")
    return OmegaConf.load(CONFIG_PATH)


def make_runtime_config(overrides: Dict[str, Any] | None = None) -> DictConfig:
    """
    Merge overrides onto the packaged defaults and resolve env interpolations.

    The defaults are put in struct mode first, so an override naming a key
    that does not exist raises instead of being silently accepted. The
    returned config is fully resolved and read-only.
    """
    base_container = OmegaConf.to_container(_load_default_config(), resolve=False)
    base = OmegaConf.create(base_container)
    OmegaConf.set_struct(base, True)

    merged = OmegaConf.merge(base, OmegaConf.create(overrides or {}))
    resolved = OmegaConf.create(OmegaConf.to_container(merged, resolve=True))
    OmegaConf.set_readonly(resolved, True)
    return resolved  # type: ignore[return-value]
