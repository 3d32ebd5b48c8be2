"""
Tests for the case-management decision tree.
"""

import logging
import unittest

import pytest

from malsim.case_management import (
    Branch,
    BranchSet,
    CaseManagementTree,
    CaseTreatment,
    HealthSystem,
    MedicateData,
)
from malsim.decision import (
    MORBIDITY_FIELD,
    PathogenesisState,
    decode_delay,
    encode_delay,
)
from malsim.drugs import DrugType, build_registry, default_registry
from malsim.errors import ScenarioError, TreeInconsistencyError
from malsim.random_stream import RandomStream
from malsim.sim_time import SimTime, TimeUnits
from tests.fixtures.sample_configs import ScriptedStream, cq_tree


def two_outcome_tree():
    """Root with outcome A (cum_p 0.6) and B (1.0); only A prescribes."""
    return {
        "fields": [{"name": "choice", "width": 1}],
        "tree": [
            {
                "key": {},
                "branches": [
                    {"outcome": {"choice": 0}, "cum_p": 0.6},
                    {"outcome": {"choice": 1}, "cum_p": 1.0},
                ],
            },
            {
                "key": {"choice": 0},
                "medications": [{"drug": "CQ", "qty": 1.5, "time": 0}],
            },
            {"key": {"choice": 1}, "medications": []},
        ],
    }


def morbidity_tree():
    """Tree keyed on morbidity; severe cases get a delayed double dose."""
    return {
        "fields": [{"name": "access", "width": 1}],
        "input_fields": ["morbidity"],
        "tree": [
            {"key": {"morbidity": "UC1"},
             "branches": [{"outcome": {"access": 1}, "cum_p": 1.0}]},
            {"key": {"morbidity": "UC2"},
             "branches": [{"outcome": {"access": 0}, "cum_p": 1.0}]},
            {"key": {"morbidity": "SEVERE"},
             "branches": [{"outcome": {"access": 1, "ts_delay": 3},
                           "cum_p": 1.0}]},
            {"key": {"morbidity": "UC1", "access": 1},
             "medications": [{"drug": "CQ", "qty": 600, "time": 0}]},
            {"key": {"morbidity": "UC2", "access": 0}, "medications": []},
            {"key": {"morbidity": "SEVERE", "access": 1, "ts_delay": 3},
             "medications": [{"drug": "CQ", "qty": 600, "time": 0},
                             {"drug": "CQ", "qty": 300, "time": 720}]},
        ],
    }


def execute(tree, rng, pg_state=PathogenesisState.MALARIA, age_years=20.0):
    queue = []
    cmid = tree.execute(queue, pg_state, None, age_years, 3, rng)
    return cmid, queue


class TestTwoOutcomeTree(unittest.TestCase):
    """The smallest useful tree: one branch set and two leaves."""

    def setUp(self):
        self.tree = CaseManagementTree.from_config(two_outcome_tree(),
                                                   default_registry())

    def test_low_draw_selects_first_outcome(self):
        rng = ScriptedStream([0.3])
        cmid, queue = execute(self.tree, rng)
        self.assertEqual(self.tree.layout.decode(cmid)["choice"], 0)
        self.assertEqual(queue, [MedicateData("CQ", 1.5, 0, 0)])
        self.assertEqual(rng.draws, 1)

    def test_high_draw_selects_second_outcome(self):
        rng = ScriptedStream([0.8])
        cmid, queue = execute(self.tree, rng)
        self.assertEqual(self.tree.layout.decode(cmid)["choice"], 1)
        self.assertEqual(queue, [])
        self.assertEqual(rng.draws, 1)

    def test_draw_at_threshold_selects_next_outcome(self):
        _, queue = execute(self.tree, ScriptedStream([0.6]))
        self.assertEqual(queue, [])

    def test_appends_to_existing_queue(self):
        queue = [MedicateData("CQ", 1.0, 60, 2)]
        self.tree.execute(queue, PathogenesisState.MALARIA, None, 20.0, 3,
                          ScriptedStream([0.1]))
        self.assertEqual(len(queue), 2)
        self.assertEqual(queue[0].seeking_delay, 2)

    def test_reachable_leaves(self):
        self.assertEqual(self.tree.n_reachable_leaves, 2)
        self.assertEqual(len(self.tree), 3)

    def test_same_seed_same_decisions(self):
        first = [execute(self.tree, rng)[0]
                 for rng in [RandomStream(11)] for _ in range(50)]
        rng = RandomStream(11)
        second = [execute(self.tree, rng)[0] for _ in range(50)]
        self.assertEqual(first, second)
        self.assertEqual(rng.draws, 50)

    def test_frequencies_follow_probabilities(self):
        rng = RandomStream(3)
        n = 5000
        treated = sum(1 for _ in range(n) if execute(self.tree, rng)[1])
        self.assertAlmostEqual(treated / n, 0.6, delta=0.03)


class TestInputFields:
    """Trees branching on the patient's morbidity."""

    def setup_method(self):
        self.tree = CaseManagementTree.from_config(morbidity_tree(),
                                                   default_registry())

    def test_morbidity_selects_subtree(self):
        _, queue = execute(self.tree, ScriptedStream([0.5]),
                           PathogenesisState.MALARIA)
        assert [m.qty for m in queue] == [600]
        _, queue = execute(
            self.tree, ScriptedStream([0.5]),
            PathogenesisState.MALARIA | PathogenesisState.SECOND_CASE,
        )
        assert queue == []

    def test_delay_applies_to_every_medication(self):
        cmid, queue = execute(
            self.tree, ScriptedStream([0.5]),
            PathogenesisState.MALARIA | PathogenesisState.COMPLICATED,
        )
        assert decode_delay(cmid) == 3
        assert [m.seeking_delay for m in queue] == [3, 3]
        assert [m.time for m in queue] == [0, 720]

    def test_missing_morbidity_subtree_rejected(self):
        cfg = morbidity_tree()
        cfg["tree"] = [n for n in cfg["tree"]
                       if n["key"].get("morbidity") != "UC2"]
        with pytest.raises(ScenarioError, match="no node"):
            CaseManagementTree.from_config(cfg, default_registry())

    def test_unknown_input_field(self):
        cfg = morbidity_tree()
        cfg["input_fields"] = ["access"]
        with pytest.raises(ScenarioError):
            CaseManagementTree.from_config(cfg, default_registry())

    def test_input_mask(self):
        assert self.tree.input_mask == \
            self.tree.layout.field(MORBIDITY_FIELD).mask

    def test_depth_bounded_by_fields(self):
        rng = RandomStream(1)
        for _ in range(20):
            before = rng.draws
            execute(self.tree, rng)
            assert rng.draws - before <= self.tree.max_depth


class TestTreeValidation:
    """Malformed trees are rejected when built."""

    def build(self, cfg, drugs=None):
        return CaseManagementTree.from_config(cfg, drugs or default_registry())

    def test_cumulative_probability_must_reach_one(self):
        cfg = cq_tree()
        cfg["tree"][0]["branches"][1]["cum_p"] = 0.9
        with pytest.raises(ScenarioError, match="expected 1.0"):
            self.build(cfg)

    def test_cumulative_probability_must_not_decrease(self):
        cfg = cq_tree()
        cfg["tree"][0]["branches"] = [
            {"outcome": {"treated": 0}, "cum_p": 0.7},
            {"outcome": {"treated": 1}, "cum_p": 0.5},
            {"outcome": {"treated": 1}, "cum_p": 1.0},
        ]
        with pytest.raises(ScenarioError, match="must not decrease"):
            self.build(cfg)

    def test_probability_out_of_range(self):
        cfg = cq_tree()
        cfg["tree"][0]["branches"][0]["cum_p"] = -0.1
        with pytest.raises(ScenarioError):
            self.build(cfg)

    def test_rounding_tolerated(self):
        cfg = cq_tree()
        cfg["tree"][0]["branches"][1]["cum_p"] = 0.9999999
        tree = self.build(cfg)
        assert tree.n_reachable_leaves == 2

    def test_missing_leaf(self):
        cfg = cq_tree()
        del cfg["tree"][2]
        with pytest.raises(ScenarioError, match="no node"):
            self.build(cfg)

    def test_unknown_drug(self):
        cfg = cq_tree()
        cfg["tree"][2]["medications"][0]["drug"] = "XX"
        with pytest.raises(ScenarioError, match="non-existent drug XX"):
            self.build(cfg)

    def test_scenario_drugs_are_prescribable(self):
        cfg = cq_tree()
        cfg["tree"][2]["medications"][0]["drug"] = "AL"
        drugs = build_registry([{"name": "Artemether-lumefantrine",
                                 "abbrev": "AL", "absorption_factor": 0.3,
                                 "half_life": 4320}])
        assert self.build(cfg, drugs).n_reachable_leaves == 2

    def test_time_of_day_range(self):
        cfg = cq_tree()
        cfg["tree"][2]["medications"][0]["time"] = 1440
        with pytest.raises(ScenarioError):
            self.build(cfg)

    def test_negative_quantity(self):
        cfg = cq_tree()
        cfg["tree"][2]["medications"][0]["qty"] = -1
        with pytest.raises(ScenarioError):
            self.build(cfg)

    def test_node_needs_exactly_one_kind(self):
        cfg = cq_tree()
        cfg["tree"][1]["branches"] = []
        with pytest.raises(ScenarioError, match="exactly one"):
            self.build(cfg)

    def test_duplicate_key(self):
        cfg = cq_tree()
        cfg["tree"].append({"key": {"treated": 0}, "medications": []})
        with pytest.raises(ScenarioError, match="more than one node"):
            self.build(cfg)

    def test_branch_cannot_redecide_field(self):
        cfg = cq_tree()
        cfg["tree"][2] = {
            "key": {"treated": 1},
            "branches": [{"outcome": {"treated": 0}, "cum_p": 1.0}],
        }
        with pytest.raises(ScenarioError, match="re-decides"):
            self.build(cfg)

    def test_branch_must_decide_something(self):
        cfg = cq_tree()
        cfg["tree"][0]["branches"][0]["outcome"] = {}
        with pytest.raises(ScenarioError):
            self.build(cfg)

    def test_empty_tree(self):
        with pytest.raises(ScenarioError, match="no nodes"):
            self.build({"tree": []})

    def test_unreachable_node_warns(self, caplog):
        cfg = cq_tree(fields=[{"name": "treated", "width": 2}])
        cfg["tree"].append({"key": {"treated": 3}, "medications": []})
        with caplog.at_level(logging.WARNING, logger="malsim.case_management"):
            tree = self.build(cfg)
        assert tree.n_reachable_leaves == 2
        assert "unreachable" in caplog.text

    def test_zero_valued_field_differs_from_undecided(self):
        # the root and the treated=0 leaf have equal identifier bits
        tree = self.build(cq_tree())
        treated = tree.layout.field("treated").mask
        assert isinstance(tree.lookup(0, 0), BranchSet)
        assert not isinstance(tree.lookup(0, treated), BranchSet)

    def test_lookup_of_unknown_decision(self):
        tree = self.build(cq_tree())
        with pytest.raises(TreeInconsistencyError):
            tree.lookup(0, tree.layout.field("ts_delay").mask)

    def test_branch_without_probability(self):
        cfg = cq_tree()
        del cfg["tree"][0]["branches"][0]["cum_p"]
        with pytest.raises(ScenarioError, match="cum_p"):
            self.build(cfg)

    @pytest.mark.parametrize("key", ["qty", "drug"])
    def test_medication_missing_entry(self, key):
        cfg = cq_tree()
        del cfg["tree"][2]["medications"][0][key]
        with pytest.raises(ScenarioError, match=key):
            self.build(cfg)


class TestBranchSet(unittest.TestCase):

    def test_first_threshold_above_draw_wins(self):
        branches = BranchSet((Branch(1, 1, 0.2), Branch(2, 2, 0.2),
                              Branch(3, 3, 1.0)))
        self.assertEqual(branches.select(0.1).outcome, 1)
        # an empty interval is never selected
        self.assertEqual(branches.select(0.2).outcome, 3)

    def test_shortfall_falls_back_to_last(self):
        branches = BranchSet((Branch(1, 1, 0.5), Branch(2, 2, 0.9999999)))
        self.assertEqual(branches.select(0.99999995).outcome, 2)


class TestCaseTreatment(unittest.TestCase):

    def test_delay_replaces_stored_delay(self):
        treatment = CaseTreatment((MedicateData("CQ", 1.0, 0, 5),
                                   MedicateData("CQ", 2.0, 60)))
        queue = []
        treatment.apply(queue, encode_delay(2))
        self.assertEqual([m.seeking_delay for m in queue], [2, 2])
        self.assertEqual([m.qty for m in queue], [1.0, 2.0])


class TestHealthSystem:

    def test_from_config(self):
        hs = HealthSystem.from_config(
            {"memory_days": 32, "case_management": cq_tree()},
            default_registry(), TimeUnits(5),
        )
        assert hs.memory == SimTime.from_days(30)
        assert hs.tree.n_reachable_leaves == 2

    def test_negative_memory(self):
        with pytest.raises(ScenarioError):
            HealthSystem.from_config(
                {"memory_days": -5, "case_management": cq_tree()},
                default_registry(), TimeUnits(5),
            )

    def test_empty_description(self):
        with pytest.raises(ScenarioError, match="empty"):
            HealthSystem.from_config(None, default_registry(), TimeUnits(5))

    def test_change(self):
        units = TimeUnits(1)
        hs = HealthSystem.from_config({"case_management": cq_tree()},
                                      default_registry(), units)
        other = HealthSystem.from_config(
            {"memory_days": 10, "case_management": cq_tree()},
            default_registry(), units,
        )
        hs.change(other)
        assert hs.tree is other.tree
        assert hs.memory == SimTime.from_days(10)
        assert hs.changes == 1


class TestDrugRegistry:

    def test_default_has_chloroquine(self):
        drug = default_registry().get("CQ")
        assert drug.name == "Chloroquine"
        assert drug.half_life == 45 * 24 * 60

    def test_duplicate_rejected(self):
        registry = default_registry()
        with pytest.raises(ScenarioError):
            registry.add(DrugType("Chloroquine", "CQ", 0.02, 1.0))

    def test_bad_entries(self):
        with pytest.raises(ScenarioError):
            build_registry([{"name": "X", "abbrev": "X"}])
        with pytest.raises(ScenarioError):
            build_registry([{"name": "X", "abbrev": "X",
                             "absorption_factor": 0.1, "half_life": 0}])
