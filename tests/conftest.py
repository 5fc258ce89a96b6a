"""
Pytest configuration and shared fixtures for the chat node tests.

Provides a local identity, a directory wired to a recording presenter,
and a fake broadcast primitive that captures outgoing bytes.
"""

import os
import sys

import pytest

# Add backend to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'backend'))

from config import LocalIdentity
from membership.directory import Directory
from substrate.gossip import BroadcastError
from substrate.models import Node

LOCAL_ADDRESS = "192.168.0.101:8888"
LOCAL_NAME = "carol"


class RecordingPresenter:
    """Presenter that remembers every notification it receives."""

    def __init__(self):
        self.rosters = []
        self.transcript = []
        self.logs = []

    def refresh_roster(self, entries):
        self.rosters.append(list(entries))

    def append_transcript_line(self, text, display_name):
        self.transcript.append(f"{display_name}: {text}")

    def append_log_line(self, text):
        self.logs.append(text)


class FakeBroadcast:
    """Callable standing in for the substrate's broadcast primitive."""

    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    def __call__(self, data):
        if self.fail:
            raise BroadcastError("network is down")
        self.sent.append(data)


def make_node(address):
    return Node(address=address, last_seen=0.0)


@pytest.fixture
def identity():
    return LocalIdentity(display_name=LOCAL_NAME, address=LOCAL_ADDRESS)


@pytest.fixture
def presenter():
    return RecordingPresenter()


@pytest.fixture
def directory(identity, presenter):
    return Directory(identity, presenter=presenter)


@pytest.fixture
def broadcast():
    return FakeBroadcast()


@pytest.fixture
def failing_broadcast():
    return FakeBroadcast(fail=True)
