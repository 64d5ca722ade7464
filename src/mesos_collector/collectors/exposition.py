"""Decode Prometheus exposition payloads into metric records.

Parsing itself is delegated to ``prometheus_client``; this module maps the
parsed metric families onto the record model.
"""

from typing import Dict, List, Optional, Tuple
from datetime import datetime, timezone

from prometheus_client.openmetrics.parser import (
    text_string_to_metric_families as parse_openmetrics,
)
from prometheus_client.parser import text_string_to_metric_families as parse_text

from mesos_collector.models import MetricKind, MetricRecord

ACCEPT_HEADER = (
    "application/openmetrics-text;version=1.0.0;q=0.5,"
    "text/plain;version=0.0.4;q=0.3,*/*;q=0.1"
)
OPENMETRICS_CONTENT_TYPE = "application/openmetrics-text"

_SIMPLE_KINDS = {
    "counter": (MetricKind.COUNTER, "counter"),
    "gauge": (MetricKind.GAUGE, "gauge"),
}


def parse(
    body: bytes, content_type: str = "", now: Optional[datetime] = None
) -> List[MetricRecord]:
    """Parse an exposition payload.

    Args:
        body: Raw response body
        content_type: Response Content-Type, selects the OpenMetrics parser
        now: Timestamp for samples without one (defaults to the current time)

    Returns:
        Parsed records

    Raises:
        ValueError: If the payload cannot be parsed
    """
    now = now or datetime.now(timezone.utc)
    text = body.decode("utf-8")
    if content_type.startswith(OPENMETRICS_CONTENT_TYPE):
        families = parse_openmetrics(text)
    else:
        families = parse_text(text)

    records: List[MetricRecord] = []
    for family in families:
        records.extend(_convert_family(family, now))
    return records


def _convert_family(family, now: datetime) -> List[MetricRecord]:
    if family.type in _SIMPLE_KINDS:
        kind, field_name = _SIMPLE_KINDS[family.type]
        return [
            MetricRecord(
                name=sample.name,
                kind=kind,
                fields={field_name: sample.value},
                tags=dict(sample.labels),
                timestamp=_timestamp(sample.timestamp, now),
            )
            for sample in family.samples
            if not sample.name.endswith("_created")
        ]
    if family.type == "summary":
        return _grouped(family, MetricKind.SUMMARY, "quantile", now)
    if family.type in ("histogram", "gaugehistogram"):
        return _grouped(family, MetricKind.HISTOGRAM, "le", now)

    return [
        MetricRecord(
            name=sample.name,
            kind=MetricKind.UNTYPED,
            fields={"value": sample.value},
            tags=dict(sample.labels),
            timestamp=_timestamp(sample.timestamp, now),
        )
        for sample in family.samples
    ]


def _grouped(family, kind: MetricKind, bound_label: str, now: datetime) -> List[MetricRecord]:
    """Fold quantile/bucket samples into one record per label set."""
    groups: Dict[Tuple, MetricRecord] = {}
    suffixes = {
        "_sum": "sum",
        "_gsum": "sum",
        "_count": "count",
        "_gcount": "count",
    }

    for sample in family.samples:
        labels = {k: v for k, v in sample.labels.items() if k != bound_label}
        key = tuple(sorted(labels.items()))
        record = groups.get(key)
        if record is None:
            record = MetricRecord(
                name=family.name,
                kind=kind,
                fields={},
                tags=labels,
                timestamp=_timestamp(sample.timestamp, now),
            )
            groups[key] = record

        suffix = sample.name[len(family.name):]
        if suffix in suffixes:
            record.fields[suffixes[suffix]] = sample.value
        elif bound_label in sample.labels:
            record.fields[sample.labels[bound_label]] = sample.value

    return list(groups.values())


def _timestamp(value, now: datetime) -> datetime:
    if value is None:
        return now
    return datetime.fromtimestamp(float(value), tz=timezone.utc)

