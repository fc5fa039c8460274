import json
from typing import Any


def parse_json_or_yaml(markup: str) -> Any:
    import yaml

    try:
        return json.loads(markup)
    except ValueError:
        return yaml.safe_load(markup)
