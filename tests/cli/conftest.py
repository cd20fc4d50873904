from typing import Iterator

import pytest

from clusterplan.logger import setup_logger


@pytest.fixture(autouse=True)
def reset_logger() -> Iterator[None]:
    # CliRunner swaps the standard streams, the handler must not outlive them
    yield
    setup_logger()
