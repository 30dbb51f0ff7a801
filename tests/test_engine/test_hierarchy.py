"""
Organizational Index Builder Tests.
"""

from grcrisk.engine.hierarchy import build_org_index, resolve_attachment
from grcrisk.engine.types import Attachment, Level, OrgNodeRecord


def _tree():
    divisions = [OrgNodeRecord("d1"), OrgNodeRecord("d2")]
    groups = [OrgNodeRecord("g1", "d1"), OrgNodeRecord("g2", "d1"), OrgNodeRecord("g3", "d2")]
    units = [OrgNodeRecord("u1", "g1"), OrgNodeRecord("u2", "g1"), OrgNodeRecord("u3", "g3")]
    return divisions, groups, units


class TestBuildOrgIndex:

    def test_parent_maps_and_child_lists(self):
        index = build_org_index(*_tree(), attachments=[])
        assert index.unit_to_group == {"u1": "g1", "u2": "g1", "u3": "g3"}
        assert index.group_to_division == {"g1": "d1", "g2": "d1", "g3": "d2"}
        assert index.units_by_group == {"g1": ["u1", "u2"], "g3": ["u3"]}
        assert index.groups_by_division == {"d1": ["g1", "g2"], "d2": ["g3"]}
        assert index.node_ids(Level.DIVISION) == ["d1", "d2"]
        assert index.node_ids(Level.UNIT) == ["u1", "u2", "u3"]

    def test_risks_partitioned_by_direct_attachment(self):
        attachments = [
            Attachment("r1", unit_id="u1"),
            Attachment("r2", group_id="g2"),
            Attachment("r3", division_id="d2"),
            Attachment("r4", unit_id="u1"),
        ]
        index = build_org_index(*_tree(), attachments=attachments)
        assert index.risks_by_unit == {"u1": ["r1", "r4"]}
        assert index.risks_by_group == {"g2": ["r2"]}
        assert index.risks_by_division == {"d2": ["r3"]}

    def test_most_specific_level_wins(self):
        attachments = [Attachment("r1", division_id="d1", group_id="g1", unit_id="u2")]
        index = build_org_index(*_tree(), attachments=attachments)
        assert index.risks_by_unit == {"u2": ["r1"]}
        assert index.risks_by_group == {}
        assert index.risks_by_division == {}

    def test_duplicate_attachment_counted_once_per_node(self):
        attachments = [Attachment("r1", unit_id="u1"), Attachment("r1", unit_id="u1")]
        index = build_org_index(*_tree(), attachments=attachments)
        assert index.risks_by_unit == {"u1": ["r1"]}

    def test_dangling_parent_becomes_root(self):
        """A group pointing at a missing division is kept, but rolls up nowhere."""
        divisions, groups, units = _tree()
        groups.append(OrgNodeRecord("g9", "missing"))
        index = build_org_index(divisions, groups, units, [])
        assert "g9" in index.group_ids
        assert "g9" not in index.group_to_division
        assert all("g9" not in children for children in index.groups_by_division.values())

    def test_self_parent_is_treated_as_dangling(self):
        index = build_org_index([], [OrgNodeRecord("g1", "g1")], [], [])
        assert index.group_ids == ["g1"]
        assert index.group_to_division == {}

    def test_deleted_parent_absent_from_input(self):
        """Deleted divisions are never loaded, so their groups become roots."""
        _, groups, units = _tree()
        index = build_org_index([OrgNodeRecord("d2")], groups, units, [])
        assert index.groups_by_division == {"d2": ["g3"]}
        assert "g1" not in index.group_to_division

    def test_dangling_attachment_falls_back_or_drops(self):
        divisions, groups, units = _tree()
        live = ({"d1", "d2"}, {"g1", "g2", "g3"}, {"u1", "u2", "u3"})
        assert resolve_attachment(Attachment("r1", group_id="g2", unit_id="gone"), *live) == (Level.GROUP, "g2")
        assert resolve_attachment(Attachment("r2", unit_id="gone"), *live) is None
        assert resolve_attachment(Attachment("r3"), *live) is None

        index = build_org_index(divisions, groups, units, [Attachment("r2", unit_id="gone")])
        assert index.risks_by_unit == {}

    def test_duplicate_node_ids_ignored(self):
        index = build_org_index([OrgNodeRecord("d1"), OrgNodeRecord("d1")], [], [], [])
        assert index.division_ids == ["d1"]
