"""Channels: independent ways to read version facts from an F5OS appliance.

Each channel opens its own connection per fetch and closes it before
returning. A fetch either returns a :class:`RawResponse` or raises a
:class:`ChannelError` tagged with the channel name.

Channels::

    rest    HTTPS GET of the RESTCONF f5-system-version container
    cli     SSH to the F5OS CLI (admin) and run "show sys version"
    script  SSH as root, upload an f5sh bash script, then execute it
"""

from logging import getLogger
import io
import os
import re
import socket
import threading
import time

import paramiko
import requests
import urllib3

from f5os_facts.models import ChannelError, ErrorKind, RawResponse

logger = getLogger(__name__)

DEFAULT_TIMEOUT = 30

API_PATH = "/restconf/data/openconfig-system:system/f5-system-version:version"
VERSION_CONTAINER = "f5-system-version:version"
YANG_JSON = "application/yang-data+json"

# F5OS CLI prompt, e.g. "r5900-2# " or "admin@r5900-2> "
PROMPT_PATTERN = r"^[\w.@()\-]+[#>]\s?$"
RECV_BUFFER_SIZE = 65535
POLL_INTERVAL = 0.2

SCRIPT_MODE = 0o755


def _ssh_error(e, channel, step=None) -> ChannelError:
    """Map a paramiko / socket exception to a ChannelError."""
    prefix = f"{step}: " if step else ""
    if isinstance(e, paramiko.AuthenticationException):
        return ChannelError(ErrorKind.AUTH_FAILURE, f"{prefix}{e}", channel)
    if isinstance(e, (socket.timeout, TimeoutError)):
        return ChannelError(ErrorKind.TIMEOUT, f"{prefix}{e}", channel)
    return ChannelError(ErrorKind.TRANSPORT_ERROR, f"{prefix}{e}", channel)


def ssh_connect(target, creds, timeout, channel) -> paramiko.SSHClient:
    """Open an SSH session to the target with password and/or key auth."""
    client = paramiko.SSHClient()
    if target.host_key_check:
        client.load_system_host_keys()
        client.set_missing_host_key_policy(paramiko.RejectPolicy())
    else:
        # StrictHostKeyChecking=no
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

    # パスワード指定時は agent / ~/.ssh の鍵を試さない（ロックアウト回避）
    use_keys = bool(creds.sshkey) or not creds.password
    kwargs = {
        "hostname": target.host,
        "port": target.ssh_port,
        "username": creds.user,
        "timeout": timeout,
        "banner_timeout": timeout,
        "auth_timeout": timeout,
        "allow_agent": use_keys,
        "look_for_keys": use_keys,
    }
    if creds.sshkey:
        kwargs["key_filename"] = os.path.expanduser(creds.sshkey)
    if creds.password:
        kwargs["password"] = creds.password

    logger.debug(f"{channel}: ssh {creds.user}@{target.host}:{target.ssh_port}")
    try:
        client.connect(**kwargs)
    except (paramiko.SSHException, OSError) as e:
        client.close()
        raise _ssh_error(e, channel, "connect") from e
    return client


class Channel:
    """Base class. Subclasses implement fetch() and describe()."""

    name = None

    def __init__(self, timeout=DEFAULT_TIMEOUT):
        self.timeout = timeout

    def fetch(self, target, cancel=None) -> RawResponse:
        raise NotImplementedError

    def describe(self, target) -> str:
        raise NotImplementedError

    def _check_cancel(self, cancel, deadline=None):
        if cancel is not None and cancel.is_set():
            raise ChannelError(
                ErrorKind.TIMEOUT, f"no response within {self.timeout}s", self.name
            )
        if deadline is not None and time.monotonic() > deadline:
            raise ChannelError(
                ErrorKind.TIMEOUT, f"no response within {self.timeout}s", self.name
            )

    def __repr__(self):
        return f"<{self.__class__.__name__} {self.name} timeout={self.timeout}>"


class RestChannel(Channel):
    """One RESTCONF GET with basic auth."""

    name = "rest"

    def url(self, target) -> str:
        return f"https://{target.host}:{target.api_port}{API_PATH}"

    def describe(self, target) -> str:
        creds = target.credentials_for(self.name)
        return f"GET {self.url(target)} (user={creds.user})"

    def fetch(self, target, cancel=None) -> RawResponse:
        creds = target.credentials_for(self.name)
        self._check_cancel(cancel)
        if not target.validate_certs:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

        url = self.url(target)
        logger.debug(f"{self.name}: GET {url}")
        try:
            resp = requests.get(
                url,
                auth=(creds.user, creds.password or ""),
                headers={"Accept": YANG_JSON, "Content-Type": YANG_JSON},
                verify=target.validate_certs,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            raise ChannelError(ErrorKind.TIMEOUT, str(e), self.name) from e
        except requests.exceptions.RequestException as e:
            raise ChannelError(ErrorKind.TRANSPORT_ERROR, str(e), self.name) from e

        if resp.status_code != 200:
            raise ChannelError(
                ErrorKind.TRANSPORT_ERROR,
                f"HTTP {resp.status_code} {resp.reason}",
                self.name,
            )
        try:
            body = resp.json()
        except ValueError as e:
            raise ChannelError(
                ErrorKind.UNEXPECTED_FORMAT, "response body is not JSON", self.name
            ) from e

        container = body.get(VERSION_CONTAINER) if isinstance(body, dict) else None
        if not isinstance(container, dict):
            raise ChannelError(
                ErrorKind.UNEXPECTED_FORMAT,
                f"{VERSION_CONTAINER} not found in response",
                self.name,
            )
        return RawResponse(self.name, container)


class CliSshChannel(Channel):
    """Interactive F5OS CLI session: wait for the prompt, send one command."""

    name = "cli"

    def __init__(self, timeout=DEFAULT_TIMEOUT, cli_command="show sys version",
                 prompt=PROMPT_PATTERN):
        super().__init__(timeout)
        self.command = cli_command
        self.prompt = re.compile(prompt)

    def describe(self, target) -> str:
        creds = target.credentials_for(self.name)
        return f"ssh {creds.user}@{target.host}:{target.ssh_port} {self.command!r}"

    def fetch(self, target, cancel=None) -> RawResponse:
        if cancel is None:
            cancel = threading.Event()
        creds = target.credentials_for(self.name)
        self._check_cancel(cancel)
        client = ssh_connect(target, creds, self.timeout, self.name)
        try:
            # 折り返し防止のため横幅を広く取る
            shell = client.invoke_shell(width=512)
            shell.settimeout(POLL_INTERVAL)
            deadline = time.monotonic() + self.timeout
            self.read_until_prompt(shell, cancel, deadline)
            shell.send((self.command + "\n").encode("utf-8"))
            transcript = self.read_until_prompt(shell, cancel, deadline)
            return RawResponse(self.name, self.frame(transcript))
        except (paramiko.SSHException, OSError) as e:
            raise _ssh_error(e, self.name) from e
        finally:
            client.close()

    def _at_prompt(self, buf: str) -> bool:
        last = buf.rsplit("\n", 1)[-1].strip("\r")
        return self.prompt.match(last) is not None

    def read_until_prompt(self, shell, cancel, deadline) -> str:
        """Read until the prompt appears at the end of output, or EOF.

        :raises ChannelError: Timeout when neither shows up before deadline.
        """
        buf = ""
        while True:
            self._check_cancel(cancel, deadline)
            try:
                data = shell.recv(RECV_BUFFER_SIZE)
            except socket.timeout:
                continue
            if not data:
                logger.debug(f"{self.name}: EOF")
                return buf
            buf += data.decode("utf-8", errors="replace")
            if self._at_prompt(buf):
                return buf

    def frame(self, transcript: str) -> list[str]:
        """Return the output lines between the echoed command and the prompt."""
        lines = [line.rstrip("\r") for line in transcript.splitlines()]
        for i, line in enumerate(lines):
            if self.command in line:
                lines = lines[i + 1:]
                break
        if lines and self.prompt.match(lines[-1]):
            lines = lines[:-1]
        return [line.strip() for line in lines if line.strip()]


class ShellScriptChannel(Channel):
    """Upload a bash script that runs f5sh, then execute it (root shell)."""

    name = "script"

    def __init__(self, timeout=DEFAULT_TIMEOUT, script_path="/root/f5sh_example.sh",
                 script_command="f5sh show sys version"):
        super().__init__(timeout)
        self.script_path = script_path
        self.script_command = script_command

    def payload(self) -> str:
        return f"#!/bin/bash\n{self.script_command}\n"

    def describe(self, target) -> str:
        creds = target.credentials_for(self.name)
        return (
            f"sftp {creds.user}@{target.host}:{self.script_path} "
            f"({self.script_command!r}) and execute"
        )

    def fetch(self, target, cancel=None) -> RawResponse:
        if cancel is None:
            cancel = threading.Event()
        creds = target.credentials_for(self.name)
        self._check_cancel(cancel)
        client = ssh_connect(target, creds, self.timeout, self.name)
        try:
            self.upload(client, cancel)
            lines = self.execute(client, cancel)
            return RawResponse(self.name, lines)
        finally:
            client.close()

    def upload(self, client, cancel):
        self._check_cancel(cancel)
        logger.debug(f"{self.name}: upload {self.script_path}")
        try:
            sftp = client.open_sftp()
            try:
                sftp.get_channel().settimeout(self.timeout)
                sftp.putfo(io.BytesIO(self.payload().encode("utf-8")), self.script_path)
                sftp.chmod(self.script_path, SCRIPT_MODE)
            finally:
                sftp.close()
        except (paramiko.SSHException, OSError) as e:
            raise _ssh_error(e, self.name, "upload") from e

    def execute(self, client, cancel) -> list[str]:
        self._check_cancel(cancel)
        logger.debug(f"{self.name}: execute {self.script_path}")
        deadline = time.monotonic() + self.timeout
        try:
            _, stdout, stderr = client.exec_command(self.script_path, timeout=self.timeout)
            chan = stdout.channel
            while not chan.exit_status_ready():
                self._check_cancel(cancel, deadline)
                cancel.wait(POLL_INTERVAL)
            out = stdout.read().decode("utf-8", errors="replace")
            err = stderr.read().decode("utf-8", errors="replace")
            rc = chan.recv_exit_status()
        except (paramiko.SSHException, OSError) as e:
            raise _ssh_error(e, self.name, "execute") from e
        if rc != 0:
            raise ChannelError(
                ErrorKind.TRANSPORT_ERROR,
                f"execute: {self.script_path} exited with {rc}: {err.strip()}",
                self.name,
            )
        return [line.strip() for line in out.splitlines() if line.strip()]


CHANNELS = {
    RestChannel.name: RestChannel,
    CliSshChannel.name: CliSshChannel,
    ShellScriptChannel.name: ShellScriptChannel,
}

# チャネルごとに受け付けるオプション（config のキー名と同じ）
CHANNEL_OPTIONS = {
    "rest": (),
    "cli": ("cli_command",),
    "script": ("script_path", "script_command"),
}


def build_channels(names, timeout=DEFAULT_TIMEOUT, **options) -> list[Channel]:
    """Instantiate channels in the given order.

    :raises ValueError: unknown channel name
    """
    channels = []
    for name in names:
        if name not in CHANNELS:
            raise ValueError(f"unknown channel: {name} (choose from {', '.join(CHANNELS)})")
        kwargs = {
            k: options[k] for k in CHANNEL_OPTIONS[name] if options.get(k) is not None
        }
        channels.append(CHANNELS[name](timeout=timeout, **kwargs))
    return channels
