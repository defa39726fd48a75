from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from postback_tracker.app.models import AttributionRecord, utc_now
from postback_tracker.app.settings import Settings


@dataclass
class StorageReport:
    total: int
    last_24h: int
    by_network: dict[str, int] = field(default_factory=dict)
    recent: list[AttributionRecord] = field(default_factory=list)


def summarize(
    records: list[AttributionRecord],
    *,
    now: Optional[datetime] = None,
    recent_limit: int = 5,
) -> StorageReport:
    now = now or utc_now()
    cutoff = now - timedelta(hours=24)
    by_network: dict[str, int] = {}
    for record in records:
        by_network[record.network] = by_network.get(record.network, 0) + 1
    newest_first = sorted(records, key=lambda record: record.created_at, reverse=True)
    return StorageReport(
        total=len(records),
        last_24h=sum(1 for record in records if record.created_at >= cutoff),
        by_network=dict(sorted(by_network.items(), key=lambda item: (-item[1], item[0]))),
        recent=newest_first[:recent_limit],
    )


def _mask(value: str) -> str:
    if not value:
        return "not set"
    if len(value) <= 8:
        return "set"
    return f"{value[:4]}...{value[-4:]}"


def format_report(
    report: StorageReport,
    *,
    settings: Settings,
    health: Optional[dict[str, Any]] = None,
    health_error: Optional[str] = None,
) -> str:
    lines = [
        "Telegram Postback Tracker",
        "=" * 40,
        f"Total tracked users:   {report.total}",
        f"Tracked last 24h:      {report.last_24h}",
        "",
        "By network:",
    ]
    if report.by_network:
        lines.extend(f"  {network:<16} {count}" for network, count in report.by_network.items())
    else:
        lines.append("  (none)")

    lines.extend(
        [
            "",
            "Configuration:",
            f"  bot token:        {_mask(settings.telegram_bot_token)}",
            f"  webhook url:      {settings.telegram_webhook_url or 'not set'}",
            f"  postback url:     {settings.propellerads_postback_url}",
            f"  aid / tid:        {settings.propellerads_aid or '-'} / {settings.propellerads_tid or '-'}",
            f"  storage file:     {settings.storage_file}",
            f"  trigger keywords: {', '.join(settings.trigger_keywords)}",
            "",
        ]
    )

    if health is not None:
        lines.append(f"Health: {health.get('status', 'unknown')} mappings={health.get('mappings')}")
    else:
        lines.append(f"Health: unreachable ({health_error or 'no response'})")

    lines.extend(["", "Recent entries:"])
    if not report.recent:
        lines.append("  (none)")
    for record in report.recent:
        lines.append(
            f"  {record.created_at.isoformat()} user={record.subject_id} "
            f"visitor={record.visitor_id} campaign={record.campaign_id} "
            f"zone={record.zone_id} network={record.network}"
        )
    return "\n".join(lines)
