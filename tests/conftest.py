import textwrap
from pathlib import Path
from typing import Callable, Dict

import pytest


@pytest.fixture
def write_docs(tmp_path: Path) -> Callable[..., Path]:
    """
    Writes declaration documents under tmp_path and returns their directory.
    """

    def write(files: Dict[str, str], directory: str = "config") -> Path:
        root = tmp_path / directory
        for name, content in files.items():
            path = root / name
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(textwrap.dedent(content))
        return root

    return write
