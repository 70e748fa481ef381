"""End-to-end tests: RelayClient against the simulated relay board."""

import sys
import time
from pathlib import Path

import pytest

from conftest import FakePort
from xkrelay.client import ClientConfig, RelayClient
from xkrelay.errors import SlaveException

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "tools"))

from simulator import RelayBoard  # noqa: E402


class BoardPort(FakePort):
    """Loopback port: every written frame is answered by a RelayBoard."""

    def __init__(self, board):
        super().__init__()
        self.board = board

    def write(self, data):
        super().write(data)
        self.feed(self.board.handle(data))


@pytest.fixture
def board():
    return RelayBoard(slave_id=1, branches=8)


@pytest.fixture
def client(board):
    c = RelayClient(BoardPort(board), 115200, ClientConfig(branch_count=8))
    yield c
    c.close()


class TestAgainstBoard:
    """Client operations round-tripped through the board model."""

    def test_on_off_one(self, client, board):
        """Confirmed single-channel commands change the board."""
        client.on_one(1)
        client.on_one(7)
        assert board.word == 0b0100_0001
        client.off_one(1)
        assert client.status() == [False] * 6 + [True, False]

    def test_flip_one(self, client, board):
        """flip_one toggles the board and the cache follows the echo."""
        client.flip_one(3)
        assert client.status_one(3) is True
        assert client.states()[2] is True
        client.flip_one(3)
        assert client.status_one(3) is False

    def test_groups(self, client, board):
        """Group commands act on the listed channels only."""
        client.on_group(0, 2, 4, 6)
        assert board.word == 0x55
        client.flip_group(0, 1)
        assert board.word == 0x56
        client.off_group(2)
        assert client.status() == client.states()

    def test_silent_commands_match_board(self, client, board):
        """Silent predictions agree with a board that executed them."""
        client.on_all()
        client.off_one_nil(2)
        client.flip_group_nil(0, 7)
        client.off_group_nil(4)
        assert client.status() == client.states()

    def test_off_all(self, client, board):
        """off_all clears everything."""
        client.on_all()
        assert board.word == 0xFF
        client.off_all()
        assert board.word == 0
        assert client.states() == [False] * 8

    def test_pulse_nil(self, client, board):
        """Board and cache both revert after a silent pulse."""
        client.on_point_nil(3, 100)
        assert client.status_one(3) is True
        time.sleep(0.4)
        assert client.status_one(3) is False
        assert client.states()[2] is False

    def test_confirmed_pulse(self, client, board):
        """A confirmed pulse is echoed while the relay is engaged."""
        client.on_point(5, 100)
        assert board.word == 0b1_0000
        time.sleep(0.4)
        assert board.word == 0

    def test_board_rejects_missing_channel(self, board):
        """A channel the board lacks comes back as a slave exception."""
        client = RelayClient(BoardPort(board), 115200,
                             ClientConfig(branch_count=16))
        with pytest.raises(SlaveException):
            client.on_one(12)
