"""Map each channel's raw response to a VersionFact."""

from logging import getLogger

from f5os_facts.channel import VERSION_CONTAINER
from f5os_facts.models import ChannelError, ErrorKind, RawResponse, VersionFact

logger = getLogger(__name__)

# RESTCONF leaf names
FIELDS = ("os-version", "service-version", "product")

# "show sys version" の行位置
# system version os-version 1.8.0-16036
# system version service-version 1.8.0-16036
# system version product F5OS-A
OS_VERSION_LINE = 0
SERVICE_VERSION_LINE = 1
PRODUCT_LINE = 2


def last_token(lines, index, channel) -> str:
    """Return the last whitespace token of lines[index].

    :raises ChannelError: UnexpectedFormat if the line is missing or blank
    """
    if index >= len(lines):
        raise ChannelError(
            ErrorKind.UNEXPECTED_FORMAT,
            f"expected at least {index + 1} lines, got {len(lines)}",
            channel,
        )
    tokens = str(lines[index]).split()
    if not tokens:
        raise ChannelError(
            ErrorKind.UNEXPECTED_FORMAT, f"line {index} is empty", channel
        )
    return tokens[-1]


def from_json(payload: dict, channel: str) -> VersionFact:
    if VERSION_CONTAINER in payload:
        payload = payload[VERSION_CONTAINER]
    if not isinstance(payload, dict):
        raise ChannelError(ErrorKind.UNEXPECTED_FORMAT, "version is not an object", channel)
    missing = [k for k in FIELDS if payload.get(k) in (None, "")]
    if missing:
        raise ChannelError(
            ErrorKind.UNEXPECTED_FORMAT, f"missing {', '.join(missing)}", channel
        )
    return VersionFact(
        os_version=str(payload["os-version"]),
        service_version=str(payload["service-version"]),
        product=str(payload["product"]),
        source_channel=channel,
    )


def from_lines(lines: list, channel: str) -> VersionFact:
    return VersionFact(
        os_version=last_token(lines, OS_VERSION_LINE, channel),
        service_version=last_token(lines, SERVICE_VERSION_LINE, channel),
        product=last_token(lines, PRODUCT_LINE, channel),
        source_channel=channel,
    )


def normalize(raw: RawResponse) -> VersionFact:
    """Normalize a RawResponse.

    JSON objects use a structured field lookup; stdout lines use the last
    token of fixed line positions.

    :raises ChannelError: UnexpectedFormat when required fields are absent
    """
    if isinstance(raw.payload, dict):
        fact = from_json(raw.payload, raw.channel)
    elif isinstance(raw.payload, (list, tuple)):
        fact = from_lines(raw.payload, raw.channel)
    else:
        raise ChannelError(
            ErrorKind.UNEXPECTED_FORMAT,
            f"unsupported payload type {type(raw.payload).__name__}",
            raw.channel,
        )
    logger.debug(f"normalize: {fact}")
    return fact
