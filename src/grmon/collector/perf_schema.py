"""Group membership listing from performance_schema.replication_group_members."""

from __future__ import annotations

from typing import Any, List, Sequence

from grmon.collector.base import PluginMetadata, QueryScraper, scan_text
from grmon.metrics import (
    NAMESPACE,
    PERF_SCHEMA,
    MetricDescriptor,
    Sample,
    ValueKind,
    build_fq_name,
)

# Projection order is the label order. Keep them in sync.
MEMBERS_QUERY = """
    SELECT MEMBER_ID, MEMBER_HOST, MEMBER_PORT, MEMBER_STATE, MEMBER_ROLE
      FROM performance_schema.replication_group_members
"""

MEMBERS_METRIC = build_fq_name(NAMESPACE, PERF_SCHEMA, "members")
MEMBER_LABELS = ("member_id", "member_host", "member_port", "member_state", "member_role")


def descriptors() -> List[MetricDescriptor]:
    return [
        MetricDescriptor(MEMBERS_METRIC, "mysql replication group members", MEMBER_LABELS),
    ]


class ReplicationGroupMembers(QueryScraper):
    """One sample per group member, value always 1, identity in the labels.

    The sample count follows group membership, so it changes as members
    join and leave.
    """

    metadata = PluginMetadata(
        name=PERF_SCHEMA + ".replication_group_member",
        help_text="Collect metrics from performance_schema.replication_group_member",
        min_source_version=8.0,
    )
    query = MEMBERS_QUERY
    columns = MEMBER_LABELS

    def __init__(self, descriptor: MetricDescriptor):
        self._descriptor = descriptor

    def map_row(self, row: Sequence[Any], index: int) -> List[Sample]:
        label_values = [
            scan_text(value, index, column) for value, column in zip(row, self.columns)
        ]
        return [Sample(self._descriptor, ValueKind.GAUGE, 1, tuple(label_values))]
