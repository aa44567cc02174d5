from unifiedauth.core.config.loader import ensure_secret, load_config
from unifiedauth.core.config.models import AuthConfig

__all__ = ["AuthConfig", "ensure_secret", "load_config"]
