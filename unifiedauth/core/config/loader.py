from __future__ import annotations

import logging
import secrets
from typing import Optional

from pydantic import ValidationError

from unifiedauth.core.config.io import atomic_write_json, read_json_file
from unifiedauth.core.config.models import AuthConfig
from unifiedauth.core.errors import ConfigError
from unifiedauth.core.logger import get_logger


def load_config(path: str, *, logger: Optional[logging.Logger] = None, write_defaults: bool = True) -> AuthConfig:
    """
    Loads AuthConfig from a JSON file.

    - missing file: defaults are used (and written back when write_defaults is set)
    - corrupt/invalid file: ConfigError
    - empty token secret: replaced by a random per-process secret (tokens do not survive restarts)
    """
    log = logger or get_logger()
    rr = read_json_file(path)
    if not rr.ok:
        if rr.error != "missing":
            raise ConfigError("Configuration file is unreadable.", path=path, error=rr.error)
        cfg = AuthConfig()
        if write_defaults:
            atomic_write_json(path, cfg.model_dump(mode="json"))
            log.info(f"Wrote default auth config to {path}")
    else:
        try:
            cfg = AuthConfig.model_validate(rr.data)
        except ValidationError as e:
            raise ConfigError("Configuration file is invalid.", path=path, errors=e.errors(include_url=False)) from e
    return ensure_secret(cfg, logger=log)


def ensure_secret(cfg: AuthConfig, *, logger: Optional[logging.Logger] = None) -> AuthConfig:
    if cfg.tokens.secret:
        return cfg
    (logger or get_logger()).warning("tokens.secret is empty; using an ephemeral signing secret for this process.")
    tokens = cfg.tokens.model_copy(update={"secret": secrets.token_urlsafe(48)})
    return cfg.model_copy(update={"tokens": tokens})
