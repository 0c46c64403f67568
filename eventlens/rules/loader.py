from pathlib import Path

import yaml
from pydantic import ValidationError

from eventlens.core.services.execution import RetryConfig
from eventlens.rules.models import DEFAULT_RULES, Rules


def load_rules(path: Path, required: bool = False) -> Rules:
    """
    Load and validate the engine rules file.
    Missing file returns defaults unless ``required`` is set.
    Raises ValueError if the YAML or the schema is invalid.
    """
    if not path.exists():
        if required:
            raise FileNotFoundError(f"Rules file not found at: {path}")
        return DEFAULT_RULES

    content = path.read_text()

    # Rules files may be wrapped in a ```yaml fenced block
    lines = content.splitlines()
    yaml_lines = []
    in_block = False
    found_block = False

    for line in lines:
        s_line = line.strip()
        if s_line.startswith("```yaml"):
            in_block = True
            found_block = True
            continue
        if in_block and s_line.startswith("```"):
            break
        if in_block:
            yaml_lines.append(line)

    clean_content = "\n".join(yaml_lines) if found_block else content

    try:
        data = yaml.safe_load(clean_content)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML syntax in rules file: {e}") from e

    try:
        return Rules.model_validate(data or {})
    except ValidationError as e:
        raise ValueError(f"Rules validation failed:\n{e}") from e


def retry_config(rules: Rules) -> RetryConfig:
    """Storage retry policy from rules."""
    retry = rules.storage.retry
    return RetryConfig(
        max_attempts=retry.max_attempts,
        backoff_seconds=tuple(retry.backoff_seconds),
    )
