"""Analysis payload helpers: the {status, stats, results} dict stored on each scan record."""
from datetime import datetime, timezone

STAT_KEYS = (
    "malicious",
    "suspicious",
    "undetected",
    "harmless",
    "timeout",
    "confirmed-timeout",
    "failure",
    "type-unsupported",
)


def empty_stats() -> dict[str, int]:
    return {k: 0 for k in STAT_KEYS}


def pending_analysis() -> dict:
    return {"status": "pending", "stats": empty_stats()}


def normalize_stats(raw: dict | None) -> dict[str, int]:
    """Keep the known counters as ints; missing or garbage values count as 0."""
    stats = empty_stats()
    if not isinstance(raw, dict):
        return stats
    for key in STAT_KEYS:
        try:
            stats[key] = int(raw.get(key) or 0)
        except (TypeError, ValueError):
            stats[key] = 0
    return stats


def has_verdicts(analysis: dict) -> bool:
    stats = analysis.get("stats") or {}
    return any((stats.get(k) or 0) > 0 for k in STAT_KEYS)


def is_settled(analysis: dict) -> bool:
    """Completed *and* at least one engine counted. A completed report with all-zero stats is not trusted."""
    return analysis.get("status") == "completed" and has_verdicts(analysis)


def record_status(provider_status: str | None) -> str:
    """Map provider analysis status onto scan record status."""
    if provider_status in ("completed", "queued"):
        return provider_status
    return "pending"


def local_detection_analysis(source: str = "local_database") -> dict:
    """Synthetic verdict for a denylisted fingerprint: one engine, malicious=1."""
    stats = empty_stats()
    stats["malicious"] = 1
    return {
        "status": "completed",
        "source": source,
        "stats": stats,
        "results": {
            "local_database": {
                "category": "malicious",
                "engine_name": "Local Hash Database",
                "engine_version": "1.0",
                "result": "Malicious file",
                "method": "hash_lookup",
                "engine_update": datetime.now(timezone.utc).date().isoformat(),
            }
        },
    }
