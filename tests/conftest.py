import pytest

from cellforth import Forth


@pytest.fixture
def forth():
    return Forth()


@pytest.fixture
def run(forth):
    """Run a line and return what it printed."""
    def _run(line):
        forth.exec(line)
        return forth.take_output()
    return _run
