from typing import Any

from omegaconf import DictConfig, ListConfig, OmegaConf

from utils.logging import log_call


@log_call
def to_plain_config(cfg: Any) -> Any:
    """Resolve an OmegaConf node into plain dicts and lists."""
    if isinstance(cfg, (DictConfig, ListConfig)):
        return OmegaConf.to_container(cfg, resolve=True)
    return cfg
