#
#   Copyright ©︎2022-2025 AIKAWA Shigechika
#
#   Licensed under the Apache License, Version 2.0 (the "License");
#   you may not use this file except in compliance with the License.
#   You may obtain a copy of the License at
#
#       http://www.apache.org/licenses/LICENSE-2.0
#
#   Unless required by applicable law or agreed to in writing, software
#   distributed under the License is distributed on an "AS IS" BASIS,
#   WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#   See the License for the specific language governing permissions and
#   limitations under the License.

import argparse
import configparser
import signal
import sys
import threading
import logging
import logging.config
import os

if os.path.isfile("logging.ini"):
    logging.config.fileConfig("logging.ini")
else:
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s [%(levelname)s] %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)]
    )
logging.getLogger("paramiko").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)

from f5os_facts import __version__ as version
from f5os_facts import common
from f5os_facts import reporter
from f5os_facts.channel import CHANNELS
from f5os_facts.collector import collect
from f5os_facts.models import ErrorKind

EXIT_CHANNEL_FAILED = 1
EXIT_MISMATCH = 2
EXIT_INTERRUPTED = 130

SUBCOMMANDS = ("collect", "check", "channels")

# Ctrl-C で全ホストの収集を止めるためのイベント
cancel = threading.Event()


# --- サブコマンド用エントリ関数 ---


def collect_host(hostname, check=False) -> int:
    """1ホストの全チャネルを収集してレポートを表示する

    :returns: 0=全チャネル成功, 1=いずれか失敗, 2=check で不一致, 130=中断
    """
    if cancel.is_set():
        return EXIT_INTERRUPTED
    try:
        target = common.build_target(hostname)
        channels = common.build_host_channels(hostname)
    except (ValueError, configparser.Error) as e:
        logger.error(f"{hostname}: {e}")
        return EXIT_CHANNEL_FAILED

    if common.args.dry_run:
        lines = [f"# {hostname}"]
        for channel in channels:
            lines.append(f"  dry-run: {channel.name}: {channel.describe(target)}")
        print("\n".join(lines))
        return 0

    max_workers = 1 if common.args.serial else None
    results = collect(target, channels, max_workers=max_workers, cancel=cancel)
    reconciliation = reporter.reconcile(results, target.expected_version)
    if common.args.format == "json":
        print(reporter.render_json(results, hostname, reconciliation))
    else:
        print(reporter.render(results, hostname, reconciliation))
        print("")

    if any(not r.ok and r.error.kind == ErrorKind.CANCELLED for r in results):
        return EXIT_INTERRUPTED
    if not all(r.ok for r in results):
        return EXIT_CHANNEL_FAILED
    if check:
        expected = reconciliation["expected"]
        if not reconciliation["consistent"]:
            return EXIT_MISMATCH
        if expected is not None and expected["compare"] != 0:
            return EXIT_MISMATCH
    return 0


def cmd_collect(hostname) -> int:
    """収集して表示"""
    return collect_host(hostname)


def cmd_check(hostname) -> int:
    """収集＋チャネル間/期待バージョンとの照合"""
    return collect_host(hostname, check=True)


def _interrupt(signum, frame):
    cancel.set()


def cmd_channels() -> int:
    """利用可能なチャネル一覧"""
    for name, cls in CHANNELS.items():
        print(f"{name:8} {cls.__doc__.strip().splitlines()[0]}")
    return 0


# --- メイン ---


def build_parser():
    # 共通オプション用の親パーサー
    parent = argparse.ArgumentParser(add_help=False)
    parent.add_argument(
        "-c", "--config", default=None, type=str,
        help="config filename (default: config.ini or ~/.config/f5os-facts/config.ini)",
    )
    parent.add_argument(
        "-n", "--dry-run", action="store_true",
        help="show what each channel would do. No connection.",
    )
    parent.add_argument("-d", "--debug", action="store_true", help="debug output")
    parent.add_argument(
        "--workers", type=int, default=1,
        help="hosts processed in parallel (default: 1)",
    )
    parent.add_argument(
        "--serial", action="store_true",
        help="run channels of a host one at a time",
    )
    parent.add_argument(
        "--channels", default=None,
        help=f"comma separated channels (default: config or all of {','.join(CHANNELS)})",
    )
    parent.add_argument(
        "--tags", default=None,
        help="comma separated tags, hosts must have all of them",
    )
    parent.add_argument(
        "--timeout", type=float, default=None,
        help="per-channel timeout in seconds (default: config or 30)",
    )
    parent.add_argument(
        "--format", choices=("text", "json"), default="text", help="report format",
    )
    parent.add_argument(
        "--ask-pass", action="store_true",
        help="prompt for passwords missing from config",
    )

    parser = argparse.ArgumentParser(
        prog="f5os-facts",
        description="f5os-facts: collect F5OS version facts over REST, CLI and shell",
        epilog="サブコマンド省略時は collect として動作します",
    )
    parser.add_argument("--version", action="version", version="%(prog)s " + version)
    subparsers = parser.add_subparsers(dest="subcommand")

    p_collect = subparsers.add_parser(
        "collect", parents=[parent], help="collect and report version facts",
    )
    p_collect.add_argument("specialhosts", metavar="hostname", nargs="*")

    p_check = subparsers.add_parser(
        "check", parents=[parent],
        help="collect and fail when channels or expected_version disagree",
    )
    p_check.add_argument("specialhosts", metavar="hostname", nargs="*")

    subparsers.add_parser("channels", help="list available channels")
    return parser


def main(argv=None):
    if argv is None:
        argv = sys.argv[1:]
    parser = build_parser()
    if not argv:
        parser.print_help()
        return 0
    # サブコマンドなし → collect として扱う
    if argv[0] not in SUBCOMMANDS and argv[0] not in ("-h", "--help", "--version"):
        argv = ["collect"] + list(argv)
    args = parser.parse_args(argv)

    if args.subcommand == "channels":
        return cmd_channels()

    common.args = args
    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)
    if common.args.config is None:
        common.args.config = common.get_default_config()

    logger.debug("start")

    if common.read_config():
        print(common.args.config, "is not ready")
        return 1

    targets = common.get_targets()
    if args.ask_pass and not args.dry_run:
        common.ask_passwords(targets)

    dispatch = {
        "collect": cmd_collect,
        "check": cmd_check,
    }
    func = dispatch[args.subcommand]
    cancel.clear()
    # Ctrl-C はイベントに変換し、各チャネルが協調的に終了する
    previous = None
    if threading.current_thread() is threading.main_thread():
        previous = signal.signal(signal.SIGINT, _interrupt)
    try:
        results = common.run_parallel(func, targets, max_workers=args.workers)
    finally:
        if previous is not None:
            signal.signal(signal.SIGINT, previous)
    if cancel.is_set():
        logger.warning("interrupted")
        return EXIT_INTERRUPTED

    # いずれかのホストが非0を返したら非0で終了
    for host, ret in results.items():
        if ret != 0:
            logger.debug(f"{host} returned {ret}")
            return ret

    logger.debug("end")
    return 0


if __name__ == "__main__":
    sys.exit(main())  # pragma: no cover
