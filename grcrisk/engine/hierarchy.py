"""
Organizational Index Builder.

One pass over the three node collections and the risk attachments produces
every lookup the rollup needs:

    unit → group, group → division             (parent maps)
    group → [units], division → [groups]        (child lists)
    risks_by_unit / risks_by_group / risks_by_division  (direct attachments)

With these, the risk set of any division is a handful of dictionary lookups
instead of a division × group × unit scan.

Broken references never raise. A node whose parent does not exist (or was
soft-deleted) becomes a root: it is still reported at its own level, it just
does not roll up any further.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

import structlog

from grcrisk.engine.types import Attachment, Level, OrgNodeRecord

logger = structlog.get_logger(__name__)


@dataclass
class OrgIndex:
    """Precomputed hierarchy lookups. Node id lists keep input order."""

    division_ids: List[str] = field(default_factory=list)
    group_ids: List[str] = field(default_factory=list)
    unit_ids: List[str] = field(default_factory=list)

    unit_to_group: Dict[str, str] = field(default_factory=dict)
    group_to_division: Dict[str, str] = field(default_factory=dict)
    units_by_group: Dict[str, List[str]] = field(default_factory=dict)
    groups_by_division: Dict[str, List[str]] = field(default_factory=dict)

    risks_by_unit: Dict[str, List[str]] = field(default_factory=dict)
    risks_by_group: Dict[str, List[str]] = field(default_factory=dict)
    risks_by_division: Dict[str, List[str]] = field(default_factory=dict)

    def node_ids(self, level: Level) -> List[str]:
        if level is Level.DIVISION:
            return self.division_ids
        if level is Level.GROUP:
            return self.group_ids
        return self.unit_ids


def _link_children(
    children: Iterable[OrgNodeRecord],
    parent_ids: set,
    child_level: Level,
) -> Tuple[List[str], Dict[str, str], Dict[str, List[str]]]:
    """Return (child ids, child → parent, parent → [children]) for one level."""
    ids: List[str] = []
    to_parent: Dict[str, str] = {}
    by_parent: Dict[str, List[str]] = defaultdict(list)
    seen = set()

    for node in children:
        if node.id in seen:
            continue
        seen.add(node.id)
        ids.append(node.id)

        if node.parent_id is None:
            continue
        if node.parent_id == node.id or node.parent_id not in parent_ids:
            logger.warning(
                "org_parent_dangling",
                level=child_level.value,
                node_id=node.id,
                parent_id=node.parent_id,
            )
            continue
        to_parent[node.id] = node.parent_id
        by_parent[node.parent_id].append(node.id)

    return ids, to_parent, dict(by_parent)


def resolve_attachment(
    attachment: Attachment,
    division_ids: set,
    group_ids: set,
    unit_ids: set,
) -> Optional[Tuple[Level, str]]:
    """Most specific live node the attachment points at, or None."""
    if attachment.unit_id is not None and attachment.unit_id in unit_ids:
        return Level.UNIT, attachment.unit_id
    if attachment.group_id is not None and attachment.group_id in group_ids:
        return Level.GROUP, attachment.group_id
    if attachment.division_id is not None and attachment.division_id in division_ids:
        return Level.DIVISION, attachment.division_id

    if attachment.unit_id or attachment.group_id or attachment.division_id:
        logger.warning(
            "risk_attachment_dangling",
            risk_id=attachment.risk_id,
            unit_id=attachment.unit_id,
            group_id=attachment.group_id,
            division_id=attachment.division_id,
        )
    return None


def build_org_index(
    divisions: Iterable[OrgNodeRecord],
    groups: Iterable[OrgNodeRecord],
    units: Iterable[OrgNodeRecord],
    attachments: Iterable[Attachment],
) -> OrgIndex:
    """Build every hierarchy lookup and the per-node direct risk lists in one pass."""
    division_ids: List[str] = list(dict.fromkeys(d.id for d in divisions))
    division_set = set(division_ids)

    group_ids, group_to_division, groups_by_division = _link_children(groups, division_set, Level.GROUP)
    group_set = set(group_ids)

    unit_ids, unit_to_group, units_by_group = _link_children(units, group_set, Level.UNIT)
    unit_set = set(unit_ids)

    direct: Dict[Level, Dict[str, Dict[str, None]]] = {
        Level.DIVISION: defaultdict(dict),
        Level.GROUP: defaultdict(dict),
        Level.UNIT: defaultdict(dict),
    }
    for attachment in attachments:
        resolved = resolve_attachment(attachment, division_set, group_set, unit_set)
        if resolved is None:
            continue
        level, node_id = resolved
        # dict keys as an ordered set: one entry per risk per node
        direct[level][node_id][attachment.risk_id] = None

    index = OrgIndex(
        division_ids=division_ids,
        group_ids=group_ids,
        unit_ids=unit_ids,
        unit_to_group=unit_to_group,
        group_to_division=group_to_division,
        units_by_group=units_by_group,
        groups_by_division=groups_by_division,
        risks_by_unit={k: list(v) for k, v in direct[Level.UNIT].items()},
        risks_by_group={k: list(v) for k, v in direct[Level.GROUP].items()},
        risks_by_division={k: list(v) for k, v in direct[Level.DIVISION].items()},
    )

    logger.debug(
        "org_index_built",
        divisions=len(division_ids),
        groups=len(group_ids),
        units=len(unit_ids),
    )
    return index
