"""
Pytest configuration and fixtures.
"""

import os
import sys
import tempfile

# Add app directory to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

# Set test environment before any app module reads config
os.environ["TESTING"] = "1"
_test_db_fd, _test_db_path = tempfile.mkstemp(suffix=".db")
os.close(_test_db_fd)
os.environ["DATABASE_PATH"] = _test_db_path

import pytest


@pytest.fixture(scope="session", autouse=True)
def cleanup_db():
    """Cleanup database file after all tests."""
    yield
    if os.path.exists(_test_db_path):
        os.remove(_test_db_path)


@pytest.fixture
def db():
    """Fresh database with the default user."""
    from config import config
    from database import reset_db, ensure_user
    reset_db()
    ensure_user(config.DEFAULT_USER_ID, config.DEFAULT_USER_CALLSIGN)
    yield


@pytest.fixture
def sample_adif():
    """Three well-formed records behind a header."""
    return (
        "Exported by TestLogger 2.1\n"
        "<ADIF_VER:5>3.1.4 <PROGRAMID:10>TestLogger\n"
        "<EOH>\n"
        "<CALL:4>W1AW <QSO_DATE:8>20230615 <TIME_ON:4>1230 <BAND:3>20m <MODE:3>SSB <EOR>\n"
        "<CALL:5>DL1AB <QSO_DATE:8>20230616 <TIME_ON:6>081500 <BAND:3>40m <MODE:2>CW "
        "<FREQ:5>7.025 <RST_SENT:3>599 <RST_RCVD:3>579 <EOR>\n"
        "<CALL:6>JA1XYZ <QSO_DATE:8>20230617 <TIME_ON:4>2300 <BAND:3>15m <MODE:3>FT8 "
        "<GRIDSQUARE:4>pm95 <DXCC:3>339 <EOR>\n"
    )
