import argparse
import configparser

import pytest

from f5os_facts import common
from f5os_facts.models import ChannelError, Credentials, DeviceTarget, ErrorKind, RawResponse

VERSION_JSON = {
    "os-version": "1.8.0-16036",
    "service-version": "1.8.0-16036",
    "product": "F5OS-A",
}

VERSION_LINES = [
    "system version os-version 1.8.0-16036",
    "system version service-version 1.8.0-16036",
    "system version product F5OS-A",
]


class FakeChannel:
    """決定的なテスト用チャネル"""

    def __init__(self, name, payload=None, error=None, delay=0, timeout=5):
        self.name = name
        self.payload = payload
        self.error = error
        self.delay = delay
        self.timeout = timeout
        self.calls = 0

    def fetch(self, target, cancel=None):
        self.calls += 1
        if self.delay:
            if cancel is not None and cancel.wait(self.delay):
                raise ChannelError(ErrorKind.TIMEOUT, "cancelled", self.name)
        if self.error is not None:
            raise self.error
        return RawResponse(self.name, self.payload)

    def describe(self, target):
        return f"fake {self.name}"


@pytest.fixture
def fake_channel():
    return FakeChannel


@pytest.fixture
def version_json():
    return dict(VERSION_JSON)


@pytest.fixture
def version_lines():
    return list(VERSION_LINES)


@pytest.fixture
def target():
    admin = Credentials(user="admin", password="adminpass")
    root = Credentials(user="root", password="rootpass")
    return DeviceTarget(
        name="test-host",
        host="192.0.2.1",
        credentials={"rest": admin, "cli": admin, "script": root},
    )


@pytest.fixture
def mock_args():
    """テスト用の args グローバル変数を設定"""
    common.args = argparse.Namespace(
        config="test.ini",
        debug=False,
        dry_run=False,
        serial=False,
        workers=1,
        channels=None,
        tags=None,
        timeout=None,
        format="text",
        ask_pass=False,
        specialhosts=[],
    )
    return common.args


@pytest.fixture
def mock_config():
    """テスト用の config グローバル変数を設定"""
    cfg = configparser.ConfigParser(allow_no_value=True)
    cfg.read_dict(
        {
            "DEFAULT": {
                "id": "admin",
                "pw": "adminpass",
                "root_id": "root",
                "root_pw": "rootpass",
                "api_port": "8888",
                "ssh_port": "22",
            },
            "test-host": {"host": "192.0.2.1"},
        }
    )
    common.config = cfg
    return cfg
