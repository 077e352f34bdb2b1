"""Render channel results and reconcile facts across channels."""

from logging import getLogger
import json

from looseversion import LooseVersion

logger = getLogger(__name__)

# VersionFact attribute -> report label
LABELS = (
    ("os_version", "os-version"),
    ("service_version", "service-version"),
    ("product", "product"),
)


def compare_version(left: str, right: str) -> int | None:
    """compare version left and right

    :param left: version left string, ex 1.8.0-16036
    :param right: version right string, ex 1.7.0-4112

    :return:  1 if left  > right
              0 if left == right
             -1 if left  < right
    """
    if left is None or right is None:
        return None
    try:
        if LooseVersion(left) > LooseVersion(right):
            return 1
        if LooseVersion(left) < LooseVersion(right):
            return -1
    except TypeError:
        # 数字と文字列が同じ位置にある (1.8.x vs 1.8.0)
        logger.warning(f"compare_version: cannot compare {left} and {right}")
        return None
    return 0


def reconcile(results, expected_version=None) -> dict:
    """Compare the facts of all successful channels.

    :returns: dict with ``consistent`` (all successful channels agree on
              every field), ``values`` (distinct values per field), and
              ``expected`` (None, or the comparison against expected_version)
    """
    facts = [r.fact for r in results if r.ok]
    values = {}
    for attr, label in LABELS:
        seen = []
        for fact in facts:
            v = getattr(fact, attr)
            if v not in seen:
                seen.append(v)
        values[label] = seen
    consistent = all(len(v) <= 1 for v in values.values())
    logger.debug(f"reconcile: {consistent=} {values=}")

    expected = None
    if expected_version:
        running = values["os-version"]
        compared = [compare_version(v, expected_version) for v in running]
        expected = {
            "version": expected_version,
            "running": running,
            # 全チャネルが一致した場合のみ 0
            "compare": compared[0] if len(set(compared)) == 1 else None,
        }
    return {"consistent": consistent, "values": values, "expected": expected}


def _render_result(result, timing=True) -> list[str]:
    elapsed = f" ({result.elapsed:.2f}s)" if timing else ""
    if result.ok:
        lines = [f"  {result.channel}: ok{elapsed}"]
        for attr, label in LABELS:
            lines.append(f"    {label}: {getattr(result.fact, attr)}")
        return lines
    error = result.error
    return [
        f"  {result.channel}: FAILED{elapsed}",
        f"    {error.kind.value}: {error.message or '-'}",
    ]


def render(results, hostname=None, reconciliation=None, timing=True) -> str:
    """Human readable report, one entry per channel in the given order."""
    lines = []
    if hostname is not None:
        lines.append(f"# {hostname}")
    for result in results:
        lines.extend(_render_result(result, timing))

    ok = sum(1 for r in results if r.ok)
    lines.append(f"  channels: {ok}/{len(results)} ok")
    if reconciliation is not None:
        if reconciliation["consistent"]:
            lines.append("  reconcile: consistent")
        else:
            lines.append("  reconcile: MISMATCH")
            for label, seen in reconciliation["values"].items():
                if len(seen) > 1:
                    lines.append(f"    {label}: {' / '.join(seen)}")
        expected = reconciliation["expected"]
        if expected is not None:
            cmp = expected["compare"]
            running = ", ".join(expected["running"]) or "unknown"
            if cmp == 0:
                lines.append(f"  expected {expected['version']}: OK")
            elif cmp == 1:
                lines.append(f"  expected {expected['version']}: NEWER ({running})")
            elif cmp == -1:
                lines.append(f"  expected {expected['version']}: OLDER ({running})")
            else:
                lines.append(f"  expected {expected['version']}: UNKNOWN ({running})")
    return "\n".join(lines)


def result_to_dict(result) -> dict:
    d = {"channel": result.channel, "ok": result.ok, "elapsed": round(result.elapsed, 3)}
    if result.ok:
        for attr, label in LABELS:
            d[label] = getattr(result.fact, attr)
    else:
        d["error"] = {"kind": result.error.kind.value, "message": result.error.message}
    return d


def render_json(results, hostname=None, reconciliation=None) -> str:
    doc = {"host": hostname, "results": [result_to_dict(r) for r in results]}
    if reconciliation is not None:
        doc["reconcile"] = reconciliation
    return json.dumps(doc, indent=2)
