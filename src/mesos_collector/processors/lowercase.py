"""Processor coercing record field keys to lower case."""

from typing import Iterable, List

from mesos_collector.models import MetricRecord


class Lowercase:
    """Lower-cases field keys of every record passing through.

    With ``send_original`` the untouched record is emitted as well, ahead of
    the lower-cased one.
    """

    def __init__(self, send_original: bool = False):
        self.send_original = send_original

    def apply(self, records: Iterable[MetricRecord]) -> List[MetricRecord]:
        out: List[MetricRecord] = []
        for record in records:
            if self.send_original:
                out.append(record.copy())
            for key in list(record.fields):
                lowered = key.lower()
                if lowered != key:
                    record.fields[lowered] = record.fields.pop(key)
            out.append(record)
        return out
