"""
Scrapers that count InnoDB Cluster members by role.

Each runs one COUNT(*) query. The result is at most one row, but we still
loop over whatever comes back: no rows means nothing to report, which is
normal while a primary election is in progress.
"""

from __future__ import annotations

from typing import Any, List, Sequence

from grmon.collector.base import PluginMetadata, QueryScraper, scan_count
from grmon.metrics import (
    INNODB_CLUSTER_SCHEMA,
    NAMESPACE,
    MetricDescriptor,
    Sample,
    ValueKind,
    build_fq_name,
)

PRIMARY_QUERY = """
    SELECT COUNT(*) FROM performance_schema.replication_group_members
     WHERE member_id = (SELECT variable_value FROM performance_schema.global_status
                         WHERE variable_name = 'group_replication_primary_member')
       AND member_state = 'ONLINE'
"""

SECONDARY_QUERY = """
    SELECT COUNT(*) FROM performance_schema.replication_group_members
     WHERE member_role = 'SECONDARY' AND member_state = 'ONLINE'
"""

PRIMARY_METRIC = build_fq_name(NAMESPACE, INNODB_CLUSTER_SCHEMA, "primary")
SECONDARY_METRIC = build_fq_name(NAMESPACE, INNODB_CLUSTER_SCHEMA, "slave")


def descriptors() -> List[MetricDescriptor]:
    return [
        MetricDescriptor(PRIMARY_METRIC, "display primary num"),
        MetricDescriptor(SECONDARY_METRIC, "display slave num"),
    ]


class _CountScraper(QueryScraper):

    columns = ("count",)

    def __init__(self, descriptor: MetricDescriptor, kind: ValueKind = ValueKind.GAUGE):
        self._descriptor = descriptor
        self._kind = kind

    def map_row(self, row: Sequence[Any], index: int) -> List[Sample]:
        count = scan_count(row[0], index, self.columns[0])
        return [Sample(self._descriptor, self._kind, count)]


class InnodbClusterPrimary(_CountScraper):
    """Number of ONLINE members that are the elected primary (0 or 1).

    Reported as a gauge. The original exporter typed this one as a counter
    while the secondary count was a gauge; pass kind=ValueKind.COUNTER to
    keep that exposition.
    """

    metadata = PluginMetadata(
        name=INNODB_CLUSTER_SCHEMA + ".primary",
        help_text="Collect metrics from performance_schema.replication_group_member and global variables",
        min_source_version=8.0,
    )
    query = PRIMARY_QUERY


class InnodbClusterSecondary(_CountScraper):
    """Number of ONLINE members in the SECONDARY role."""

    metadata = PluginMetadata(
        name=INNODB_CLUSTER_SCHEMA + ".slave",
        help_text="Collect metrics from performance_schema.replication_group_members",
        min_source_version=8.0,
    )
    query = SECONDARY_QUERY
