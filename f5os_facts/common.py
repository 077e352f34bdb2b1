"""Common utilities: config loading, target resolution, channel setup, parallel execution."""

from concurrent import futures
import configparser
import getpass
import os
import sys
import threading
from logging import getLogger

from f5os_facts.channel import DEFAULT_TIMEOUT, build_channels
from f5os_facts.models import Credentials, DeviceTarget

logger = getLogger(__name__)

config = None
config_lock = threading.Lock()
args = None

DEFAULT_CONFIG = "config.ini"
DEFAULT_CHANNELS = "rest, cli, script"

# パスワードを含むキー（debug 出力でマスクする）
SECRET_KEYS = ("pw", "root_pw")

# channel -> (user key, password key, default user)
ACCOUNTS = {
    "rest": ("id", "pw", "admin"),
    "cli": ("id", "pw", "admin"),
    "script": ("root_id", "root_pw", "root"),
}


def get_default_config():
    """Search for config file in standard locations."""
    # カレントディレクトリ
    if os.path.isfile(DEFAULT_CONFIG):
        return DEFAULT_CONFIG
    # XDG_CONFIG_HOME（未設定なら ~/.config）
    xdg = os.environ.get("XDG_CONFIG_HOME", os.path.expanduser("~/.config"))
    xdg_path = os.path.join(xdg, "f5os-facts", DEFAULT_CONFIG)
    if os.path.isfile(xdg_path):
        return xdg_path
    return DEFAULT_CONFIG


def read_config():
    """Read and parse the INI config file.

    :returns: True on error (missing or empty file), False otherwise
    """
    global config
    config = configparser.ConfigParser(allow_no_value=True)
    config.read(args.config)
    if len(config.sections()) == 0:
        print(args.config, "is empty")
        return True
    for section in config.sections():
        if config.get(section, "host", fallback=None) is None:
            # host is [section] name
            config.set(section, "host", section)
        if args.debug:
            for key in config[section]:
                value = "****" if key in SECRET_KEYS else config[section][key]
                print(section, ">", key, ":", value)
            print()
    return False


def _get_host_tags(section: str) -> set[str]:
    """Return the set of tags for a config section."""
    raw = config.get(section, "tags", fallback="")
    if not raw or not raw.strip():
        return set()
    return {t.strip().lower() for t in raw.split(",")}


def _filter_by_tags(required_tags: set[str]) -> list[str]:
    """Return sections whose tags are a superset of required_tags (AND)."""
    return [s for s in config.sections() if required_tags <= _get_host_tags(s)]


def _check_hosts(hosts):
    for i in hosts:
        if not config.has_section(i):
            print(i, "is not found in", args.config)
            sys.exit(1)


def get_targets():
    """Return target host list from CLI args, tags, or config sections."""
    tags = getattr(args, "tags", None)
    hosts = list(getattr(args, "specialhosts", None) or [])

    if tags is not None:
        required_tags = {t.strip().lower() for t in tags.split(",") if t.strip()}
    else:
        required_tags = set()

    # --tags なし: hosts 指定があればそれのみ、なければ全セクション
    if not required_tags:
        if hosts:
            _check_hosts(hosts)
            return hosts
        return config.sections()

    tag_matched = _filter_by_tags(required_tags)
    if not hosts:
        if not tag_matched:
            print("no hosts matched tags:", tags)
            sys.exit(1)
        return tag_matched

    # --tags あり & hosts あり → タグフィルタ結果 ∪ hosts（重複排除）
    _check_hosts(hosts)
    targets = []
    for i in tag_matched + hosts:
        if i not in targets:
            targets.append(i)
    return targets


def get_channel_names(hostname) -> list[str]:
    """Channels to run for a host: --channels, else config, else all."""
    raw = getattr(args, "channels", None)
    if raw is None:
        raw = config.get(hostname, "channels", fallback=None) or DEFAULT_CHANNELS
    return [c.strip().lower() for c in raw.split(",") if c.strip()]


def get_timeout(hostname) -> float:
    timeout = getattr(args, "timeout", None)
    if timeout is not None:
        return timeout
    return config.getfloat(hostname, "timeout", fallback=DEFAULT_TIMEOUT)


def _credentials(hostname, channel) -> Credentials:
    user_key, pw_key, default_user = ACCOUNTS[channel]
    return Credentials(
        user=config.get(hostname, user_key, fallback=None) or default_user,
        password=config.get(hostname, pw_key, fallback=None) or None,
        sshkey=config.get(hostname, "sshkey", fallback=None) or None,
    )


def build_target(hostname) -> DeviceTarget:
    """Build the immutable DeviceTarget of a config section."""
    return DeviceTarget(
        name=hostname,
        host=config.get(hostname, "host"),
        credentials={c: _credentials(hostname, c) for c in ACCOUNTS},
        api_port=config.getint(hostname, "api_port", fallback=8888),
        ssh_port=config.getint(hostname, "ssh_port", fallback=22),
        validate_certs=config.getboolean(hostname, "validate_certs", fallback=False),
        host_key_check=config.getboolean(hostname, "host_key_check", fallback=False),
        expected_version=config.get(hostname, "expected_version", fallback=None) or None,
    )


def build_host_channels(hostname):
    """Instantiate the configured channels of a host.

    :raises ValueError: unknown channel name or no channel configured
    """
    names = get_channel_names(hostname)
    if not names:
        raise ValueError("no channels configured")
    return build_channels(
        names,
        timeout=get_timeout(hostname),
        cli_command=config.get(hostname, "cli_command", fallback=None),
        script_path=config.get(hostname, "script_path", fallback=None),
        script_command=config.get(hostname, "script_command", fallback=None),
    )


def ask_passwords(targets, prompt=None):
    """Prompt once per account for passwords missing from the config.

    Must run before any DeviceTarget is built.
    """
    if prompt is None:
        prompt = getpass.getpass
    cache = {}
    for hostname in targets:
        for channel in get_channel_names(hostname):
            if channel not in ACCOUNTS:
                continue
            user_key, pw_key, default_user = ACCOUNTS[channel]
            if config.get(hostname, pw_key, fallback=None):
                continue
            user = config.get(hostname, user_key, fallback=None) or default_user
            if user not in cache:
                cache[user] = prompt(f"ENTER password for {user}: ")
            with config_lock:
                # ConfigParser の補間対象にならないよう % をエスケープ
                config.set(hostname, pw_key, cache[user].replace("%", "%%"))


def run_parallel(func, targets, max_workers=1):
    """Run a function against targets using ThreadPoolExecutor.

    When max_workers=1, runs serially.
    """
    if max_workers <= 1:
        results = {}
        for target in targets:
            results[target] = func(target)
        return results

    with futures.ThreadPoolExecutor(max_workers=max_workers) as executor:
        future_to_target = {
            executor.submit(func, target): target
            for target in targets
        }
        results = {}
        for future in futures.as_completed(future_to_target):
            target = future_to_target[future]
            try:
                results[target] = future.result()
            except Exception as e:
                logger.error(f"{target} generated an exception: {e}")
                results[target] = 1
        # 入力順に並べ直す
        return {t: results[t] for t in targets}
