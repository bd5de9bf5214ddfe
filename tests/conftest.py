import os
import sys

import pytest

# Make the package and the test doubles importable without installation
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, ROOT)
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from fakes import FakeSolanaRpc, PROGRAM_ID  # noqa: E402


@pytest.fixture
def rpc():
    return FakeSolanaRpc(finalized_slot=1000)


@pytest.fixture
def program_id():
    return PROGRAM_ID
