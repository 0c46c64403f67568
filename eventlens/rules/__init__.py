from eventlens.rules.loader import load_rules, retry_config
from eventlens.rules.models import DEFAULT_RULES, Rules

__all__ = ["DEFAULT_RULES", "Rules", "load_rules", "retry_config"]
