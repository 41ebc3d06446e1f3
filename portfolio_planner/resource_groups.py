"""
Resource group detection from repeated bucket values.

Three shapes come out of a bucket:

1. Peer bucket: every member carries its own headcount. Members share a
   group id for display only and schedule independently.
2. Pool: one row carries the pool-level numbers (a merged cell in the source
   sheet) and the rest have none. The pool figures are archived into a
   ``Pool`` record and the carrying row is demoted to an ordinary sub-project
   sized by its own sizing band. Zero-resource rows become pool children.
3. Peers inside a pool bucket: extra rows with their own headcount keep it
   and schedule outside the pool.

Classification never mutates the input. Demoted rows are recorded in an
``originals`` side-table so re-running detection on a previous result starts
from the pre-classification values.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from .models import (
    STANDALONE,
    GroupTag,
    Peer,
    Pool,
    PoolChild,
    PoolParent,
    Project,
    RowNumber,
)
from .sizing import months_from_sizing, total_resources

logger = logging.getLogger(__name__)

_MAX_GROUP_ID_LENGTH = 60


@dataclass(frozen=True)
class ResourceGroups:
    projects: Tuple[Project, ...]
    tags: Mapping[RowNumber, GroupTag] = field(default_factory=dict)
    originals: Mapping[RowNumber, Project] = field(default_factory=dict)

    def tag(self, row: RowNumber) -> GroupTag:
        return self.tags.get(row, STANDALONE)

    def is_pool_child(self, row: RowNumber) -> bool:
        return isinstance(self.tag(row), PoolChild)

    def is_pool_parent(self, row: RowNumber) -> bool:
        return isinstance(self.tag(row), PoolParent)

    def parent_of(self, row: RowNumber) -> Optional[RowNumber]:
        tag = self.tag(row)
        return tag.parent_row if isinstance(tag, PoolChild) else None

    def children_of(self, row: RowNumber) -> List[Project]:
        tag = self.tag(row)
        if not isinstance(tag, PoolParent):
            return []
        child_rows = set(tag.child_rows)
        return [project for project in self.projects if project.row_number in child_rows]

    def restored(self) -> List[Project]:
        """Projects with pre-classification values, in input order."""
        return [self.originals.get(project.row_number, project) for project in self.projects]


ProjectSource = Union[ResourceGroups, Sequence[Project]]


def _slug(name: str) -> str:
    slug = re.sub(r"\s+", "-", name)
    slug = re.sub(r"[^\w\-]", "", slug)
    return slug[:_MAX_GROUP_ID_LENGTH]


def _collect_buckets(projects: Iterable[Project]) -> Dict[str, List[Project]]:
    buckets: Dict[str, List[Project]] = {}
    last_key = ""
    for project in projects:
        bucket_value = (project.bucket or "").strip()
        if bucket_value:
            key = bucket_value.lower()
            last_key = key
        elif project.bucket_continuation:
            key = last_key
        else:
            key = ""
        if not key:
            continue
        buckets.setdefault(key, []).append(project)
    return buckets


def _pool_row(with_resources: Sequence[Project]) -> Project:
    best = with_resources[0]
    for candidate in with_resources[1:]:
        if total_resources(candidate) > total_resources(best):
            best = candidate
    return best


def _demote(pool_row: Project) -> Project:
    sizing_months = months_from_sizing(pool_row.sizing_label)
    return replace(
        pool_row,
        dev_resources=0.0,
        total_person_months=None,
        duration_months=float(sizing_months) if sizing_months > 0 else pool_row.duration_months,
    )


def detect_resource_groups(source: ProjectSource) -> ResourceGroups:
    """Classify projects into standalone rows, peer buckets and shared pools."""
    if isinstance(source, ResourceGroups):
        projects = source.restored()
    else:
        projects = list(source)

    tags: Dict[RowNumber, GroupTag] = {}
    originals: Dict[RowNumber, Project] = {}
    effective: Dict[RowNumber, Project] = {}

    for key, members in _collect_buckets(projects).items():
        if len(members) < 2:
            continue
        bucket_name = (members[0].bucket or "").strip() or key
        with_resources = [p for p in members if total_resources(p) > 0]
        without_resources = [p for p in members if total_resources(p) <= 0]

        if with_resources and without_resources:
            pool_row = _pool_row(with_resources)
            peers = [p for p in with_resources if p.row_number != pool_row.row_number]
            group_id = f"pool-{pool_row.row_number}"
            pool = Pool(
                total_resources=total_resources(pool_row),
                total_person_months=pool_row.total_person_months,
                duration_months=pool_row.duration_months or 0.0,
            )
            originals[pool_row.row_number] = pool_row
            effective[pool_row.row_number] = _demote(pool_row)
            child_rows = tuple(p.row_number for p in without_resources)
            tags[pool_row.row_number] = PoolParent(
                group_id=group_id,
                group_name=bucket_name,
                pool=pool,
                child_rows=child_rows,
                peer_rows=tuple(p.row_number for p in peers),
            )
            for child in without_resources:
                tags[child.row_number] = PoolChild(
                    group_id=group_id,
                    group_name=bucket_name,
                    parent_row=pool_row.row_number,
                )
            for peer in peers:
                tags[peer.row_number] = Peer(group_id=group_id, group_name=bucket_name)
            logger.debug(
                "resource groups: pool %s parent=%s children=%s peers=%s",
                bucket_name,
                pool_row.row_number,
                len(child_rows),
                len(peers),
            )
        else:
            slug = _slug(bucket_name or key)
            group_id = f"bucket-{slug}" if slug else f"bucket-{members[0].row_number}"
            for member in members:
                tags[member.row_number] = Peer(group_id=group_id, group_name=bucket_name)
            logger.debug("resource groups: peer bucket %s members=%s", bucket_name, len(members))

    classified = tuple(effective.get(p.row_number, p) for p in projects)
    return ResourceGroups(projects=classified, tags=tags, originals=originals)


def ensure_groups(source: ProjectSource) -> ResourceGroups:
    if isinstance(source, ResourceGroups):
        return source
    return detect_resource_groups(source)
