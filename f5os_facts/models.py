"""Data model: device target, raw responses, normalized facts, channel results."""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping


class ErrorKind(str, Enum):
    TIMEOUT = "timeout"
    AUTH_FAILURE = "auth-failure"
    TRANSPORT_ERROR = "transport-error"
    UNEXPECTED_FORMAT = "unexpected-format"
    # 中断時に未完了だったチャネル
    CANCELLED = "cancelled"


class ChannelError(Exception):
    """Failure of one channel, tagged with its kind and originating channel."""

    def __init__(self, kind: ErrorKind, message: str = "", channel: str | None = None):
        super().__init__(message or kind.value)
        self.kind = kind
        self.message = message
        self.channel = channel

    def __str__(self):
        text = f"{self.kind.value}: {self.message}" if self.message else self.kind.value
        if self.channel:
            return f"{self.channel}: {text}"
        return text


@dataclass(frozen=True)
class Credentials:
    user: str
    password: str | None = None
    sshkey: str | None = None


@dataclass(frozen=True)
class DeviceTarget:
    """One physical appliance and the parameters of every channel.

    Built once from the config file and never changed during a run.
    """

    name: str
    host: str
    credentials: Mapping[str, Credentials] = field(default_factory=dict)
    api_port: int = 8888
    ssh_port: int = 22
    validate_certs: bool = False
    host_key_check: bool = False
    expected_version: str | None = None

    def __post_init__(self):
        # frozen でも dict は書き換えられるので読み取り専用にする
        object.__setattr__(
            self, "credentials", MappingProxyType(dict(self.credentials))
        )

    def credentials_for(self, channel: str) -> Credentials:
        try:
            return self.credentials[channel]
        except KeyError:
            raise ChannelError(
                ErrorKind.AUTH_FAILURE, "no credentials configured", channel
            ) from None


@dataclass(frozen=True)
class RawResponse:
    """Unparsed channel output: a JSON object or a list of stdout lines."""

    channel: str
    payload: dict | list


@dataclass(frozen=True)
class VersionFact:
    os_version: str
    service_version: str
    product: str
    source_channel: str


@dataclass(frozen=True)
class ChannelResult:
    """Success (fact) or Failure (error) of one channel invocation."""

    channel: str
    elapsed: float
    fact: VersionFact | None = None
    error: ChannelError | None = None

    @classmethod
    def success(cls, fact: VersionFact, elapsed: float) -> "ChannelResult":
        return cls(channel=fact.source_channel, elapsed=elapsed, fact=fact)

    @classmethod
    def failure(cls, channel: str, error: ChannelError, elapsed: float) -> "ChannelResult":
        return cls(channel=channel, elapsed=elapsed, error=error)

    @property
    def ok(self) -> bool:
        return self.error is None
