"""
Favorites list: table names to replicate in one batch, one per line
"""

from pathlib import Path
from typing import Iterable, List, Union


def parse_favorites(lines: Iterable[str]) -> List[str]:
    """Table names in file order, skipping blank lines and # comments"""
    tables = []
    for line in lines:
        line = line.strip()
        if not line or line.startswith('#'):
            continue
        tables.append(line)
    return tables


def load_favorites(path: Union[str, Path]) -> List[str]:
    with open(Path(path).expanduser(), 'r', encoding='utf-8') as f:
        return parse_favorites(f)
