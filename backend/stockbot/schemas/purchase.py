from typing import Any, List


def line_items(raw: Any) -> List[Any]:
    """Purchase ``items`` as a list; keyed objects (``{"0": {...}}``) give their values in key order."""
    if not raw:
        return []
    if isinstance(raw, dict):
        return [raw[k] for k in sorted(raw, key=lambda k: (len(str(k)), str(k)))]
    if isinstance(raw, list):
        return raw
    return [raw]
