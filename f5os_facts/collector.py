"""Run every configured channel against one target and gather the results.

A failure is caught at the channel boundary and turned into a failed
ChannelResult, so one broken channel never hides the others. Results come
back in configured channel order regardless of completion order.
"""

from concurrent import futures
import threading
import time
from logging import getLogger

from f5os_facts.models import ChannelError, ChannelResult, ErrorKind
from f5os_facts.normalizer import normalize

logger = getLogger(__name__)

POLL_INTERVAL = 0.2
# watchdog 発火後、チャネルが自ら止まるのを待つ猶予（秒）
TIMEOUT_GRACE = 0.5


def run_channel(target, channel, event=None, cancel=None) -> ChannelResult:
    """Fetch and normalize one channel. Never raises.

    A watchdog sets ``event`` after ``channel.timeout`` seconds; the channel
    polls it during I/O and gives up with a Timeout.
    """
    if event is None:
        event = threading.Event()
    if cancel is not None and cancel.is_set():
        return ChannelResult.failure(
            channel.name, ChannelError(ErrorKind.CANCELLED, "not started", channel.name), 0.0
        )

    logger.debug(f"{target.name}: {channel.name} start")
    watchdog = threading.Timer(channel.timeout, event.set)
    watchdog.daemon = True
    start = time.monotonic()
    watchdog.start()
    try:
        raw = channel.fetch(target, cancel=event)
        fact = normalize(raw)
        elapsed = time.monotonic() - start
        if elapsed > channel.timeout:
            raise ChannelError(
                ErrorKind.TIMEOUT, f"took {elapsed:.1f}s (limit {channel.timeout}s)", channel.name
            )
        logger.debug(f"{target.name}: {channel.name} ok {elapsed:.2f}s")
        return ChannelResult.success(fact, elapsed)
    except ChannelError as e:
        error = e
    except Exception as e:
        error = ChannelError(ErrorKind.TRANSPORT_ERROR, str(e) or type(e).__name__, channel.name)
        error.__cause__ = e
    finally:
        watchdog.cancel()

    if error.channel is None:
        error.channel = channel.name
    if cancel is not None and cancel.is_set() and error.kind == ErrorKind.TIMEOUT:
        error = ChannelError(ErrorKind.CANCELLED, "interrupted", channel.name)
    elapsed = time.monotonic() - start
    logger.error(f"{target.name}: {error} ({elapsed:.2f}s)")
    return ChannelResult.failure(channel.name, error, elapsed)


def collect(target, channels, max_workers=None, cancel=None) -> list[ChannelResult]:
    """Run channels concurrently and return one result per channel, in order.

    :param max_workers: channels run at once (default: all; 1 = serial)
    :param cancel: run-level event; setting it (or Ctrl-C) cancels in-flight
                   channels and reports unfinished ones as cancelled
    """
    channels = list(channels)
    if cancel is None:
        cancel = threading.Event()
    if not channels:
        return []
    if max_workers is None or max_workers < 1:
        max_workers = len(channels)

    events = [threading.Event() for _ in channels]
    results = [None] * len(channels)
    executor = futures.ThreadPoolExecutor(
        max_workers=max_workers, thread_name_prefix=f"collect-{target.name}"
    )
    future_to_index = {
        executor.submit(run_channel, target, channel, events[i], cancel): i
        for i, channel in enumerate(channels)
    }
    pending = set(future_to_index)
    started = {}
    abandoned = False
    try:
        while pending and not cancel.is_set():
            done, pending = futures.wait(
                pending, timeout=POLL_INTERVAL, return_when=futures.FIRST_COMPLETED
            )
            for future in done:
                results[future_to_index[future]] = future.result()
            now = time.monotonic()
            for future in list(pending):
                if future not in started:
                    if future.running():
                        started[future] = now
                    continue
                i = future_to_index[future]
                elapsed = now - started[future]
                if elapsed <= channels[i].timeout + TIMEOUT_GRACE:
                    continue
                # watchdog を無視するチャネルは待たずに打ち切る
                events[i].set()
                pending.discard(future)
                abandoned = True
                channel = channels[i]
                error = ChannelError(
                    ErrorKind.TIMEOUT, f"no response within {channel.timeout}s", channel.name
                )
                logger.error(f"{target.name}: {error} (abandoned after {elapsed:.2f}s)")
                results[i] = ChannelResult.failure(channel.name, error, elapsed)
    except KeyboardInterrupt:
        logger.warning(f"{target.name}: interrupted, cancelling channels")
        cancel.set()

    if pending or abandoned:
        for event in events:
            event.set()
        executor.shutdown(wait=False, cancel_futures=True)
    else:
        executor.shutdown(wait=True)

    # 中断時に未格納のまま残った完了済み結果を拾う
    for future, i in future_to_index.items():
        if results[i] is None and future.done() and not future.cancelled():
            results[i] = future.result()

    for i, channel in enumerate(channels):
        if results[i] is None:
            results[i] = ChannelResult.failure(
                channel.name,
                ChannelError(ErrorKind.CANCELLED, "interrupted", channel.name),
                0.0,
            )
    return results
