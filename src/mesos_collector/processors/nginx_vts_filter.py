"""Processor unpacking nginx VTS filter tags into regular tags."""

from typing import Dict, Iterable, List, Optional, Tuple
from dataclasses import dataclass
import logging

from mesos_collector.models import MetricRecord

logger = logging.getLogger(__name__)

FILTER_TAG = "filter"
FILTER_NAME_TAG = "filter_name"

Tag = Tuple[str, str]


@dataclass
class Conversion:
    """One metric name whose filter tags are unpacked."""

    measurement: str
    tag_delimiter: str = ","
    key_value_delimiter: str = "="

    @classmethod
    def from_dict(cls, data: Dict) -> "Conversion":
        return cls(
            measurement=data.get("measurement") or "",
            tag_delimiter=data.get("tag_delimiter") or ",",
            key_value_delimiter=data.get("key_value_delimiter") or "=",
        )


def unwrap_tags(value: str, key_value_delimiter: str = "=", tag_delimiter: str = ",") -> List[Tag]:
    """Split ``a=x,b=y`` into ``[("a", "x"), ("b", "y")]``.

    Raises:
        ValueError: If any element is not exactly one key-value pair
    """
    tags = []
    for pair in value.split(tag_delimiter):
        parts = pair.split(key_value_delimiter)
        if len(parts) != 2:
            raise ValueError(f"not a key-value pair: {pair!r}")
        tags.append((parts[0], parts[1]))
    return tags


def vts_filter_name(name: str, filter_tags: List[Tag], filter_name_tags: List[Tag]) -> str:
    """Rename a VTS filter metric after the first unwrapped tag keys.

    ``nginx_vts_filter_requests_total`` with filter key ``upstream`` and
    filter_name key ``uri`` becomes ``nginx_upstream_uri_requests_total``.

    Raises:
        ValueError: If a tag list is empty or the name has fewer than three parts
    """
    if not filter_tags:
        raise ValueError("unwrapped tag from filter required")
    if not filter_name_tags:
        raise ValueError("unwrapped tag from filter_name required")
    parts = name.split("_")
    if len(parts) < 3:
        raise ValueError("metric name needs at least three parts")
    parts[1] = filter_tags[0][0]
    parts[2] = filter_name_tags[0][0]
    return "_".join(parts)


class NginxVTSFilter:
    """Turns the ``filter`` and ``filter_name`` tags of VTS metrics into tags.

    The nginx VTS module packs user-defined filter keys into two tags::

        nginx_vts_filter_requests_total{filter="upstream=Bouncer,status=401",
                                        filter_name="client=Mesos"}

    which this processor rewrites to::

        nginx_upstream_client_requests_total{upstream="Bouncer", status="401",
                                             client="Mesos"}

    Each step stops at the first malformed tag, leaving the rest of the
    record untouched.
    """

    def __init__(self, conversions: Optional[Iterable[Conversion]] = None):
        self.conversions = list(conversions or [])

    @classmethod
    def from_config(cls, config: Optional[Dict] = None) -> "NginxVTSFilter":
        """Build from a config dict with a ``conversions`` list."""
        config = config or {}
        return cls(Conversion.from_dict(c) for c in config.get("conversions") or [])

    def apply(self, records: Iterable[MetricRecord]) -> List[MetricRecord]:
        records = list(records)
        for record in records:
            for conversion in self.conversions:
                if conversion.measurement and record.name == conversion.measurement:
                    self._convert(record, conversion)
        return records

    def _convert(self, record: MetricRecord, conversion: Conversion) -> None:
        name = record.name

        filter_tags = self._unwrap(record, FILTER_TAG, conversion)
        if filter_tags is None:
            return
        filter_name_tags = self._unwrap(record, FILTER_NAME_TAG, conversion)
        if filter_name_tags is None:
            return

        try:
            record.name = vts_filter_name(name, filter_tags, filter_name_tags)
        except ValueError as e:
            logger.error(f"Could not rename {name}: {e}")

    @staticmethod
    def _unwrap(
        record: MetricRecord, key: str, conversion: Conversion
    ) -> Optional[List[Tag]]:
        value = record.get_tag(key)
        if value is None:
            logger.error(f"{record.name} has no tag {key}")
            return None
        try:
            tags = unwrap_tags(value, conversion.key_value_delimiter, conversion.tag_delimiter)
        except ValueError as e:
            logger.error(f"Could not unwrap {key} tags {value!r}: {e}")
            return None

        for tag_key, tag_value in tags:
            record.add_tag(tag_key, tag_value)
        record.remove_tag(key)
        return tags
