"""
Case-management decision tree.

A tree maps partially built decision identifiers to nodes. A node is either
a probability branch set, which draws one random value and fixes one or more
decision fields, or a leaf holding the treatment to prescribe. Traversal
starts from the patient's input fields and descends until a leaf is reached;
the final identifier classifies the outcome and carries the
treatment-seeking delay applied to every prescribed medication.
"""

import logging
from dataclasses import dataclass, replace
from itertools import product
from typing import Dict, List, MutableSequence, Tuple, Union

from utils.logging import log_call
from utils.config import to_plain_config

from .decision import (
    AGE_FIELD,
    INPUT_FIELDS,
    MORBIDITY_FIELD,
    TSDELAY_NUM_MAX,
    AgeBracket,
    DecisionLayout,
    Morbidity,
    decode_delay,
)
from .drugs import MINUTES_PER_DAY, DrugRegistry
from .errors import ScenarioError, TreeInconsistencyError
from .random_stream import RandomStream
from .sim_time import SimTime, TimeUnits

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MedicateData:
    """One prescribed dose."""

    abbrev: str          # drug abbreviation
    qty: float           # quantity prescribed
    time: int            # minutes from start of day
    seeking_delay: int = 0   # days before treatment seeking


@dataclass(frozen=True)
class CaseTreatment:
    """Medications prescribed at a leaf, in administration order."""

    medications: Tuple[MedicateData, ...] = ()

    def apply(self, medicate_queue: MutableSequence[MedicateData],
              cmid: int) -> None:
        """Append this treatment to ``medicate_queue``.

        The treatment-seeking delay is taken from ``cmid`` and replaces the
        delay of every medication.
        """
        delay = decode_delay(cmid)
        assert delay <= TSDELAY_NUM_MAX
        for medication in self.medications:
            medicate_queue.append(replace(medication, seeking_delay=delay))


@dataclass(frozen=True)
class Branch:
    outcome: int         # identifier bits fixed by this branch
    fields_mask: int     # mask of every field this branch fixes
    cum_p: float


@dataclass(frozen=True)
class BranchSet:
    """Probability branches; the last must have cumulative probability 1."""

    branches: Tuple[Branch, ...]

    def select(self, draw: float) -> Branch:
        for branch in self.branches:
            if draw < branch.cum_p:
                return branch
        # floating-point shortfall of the final cumulative probability
        return self.branches[-1]


@dataclass(frozen=True)
class Leaf:
    treatment: CaseTreatment


Node = Union[BranchSet, Leaf]
NodeKey = Tuple[int, int]    # (mask, cmid & mask)


class CaseManagementTree:
    """
    Probability-branch tree producing treatments.

    Parameters
    ----------
    layout : DecisionLayout
        Bitfield layout of decision identifiers
    nodes : dict
        Nodes keyed by ``(mask, cmid & mask)``
    input_mask : int, default=0
        Mask of the input fields the tree branches on; traversal starts with
        this mask.

    Notes
    -----
    Keys include the mask so that a field fixed to zero is distinguishable
    from a field not yet decided.
    """

    PROBABILITY_TOLERANCE = 1e-6

    def __init__(
        self,
        layout: DecisionLayout,
        nodes: Dict[NodeKey, Node],
        input_mask: int = 0
    ):
        self.layout = layout
        self.input_mask = input_mask
        self._nodes = dict(nodes)
        self.max_depth = len(layout.fields)
        self.n_reachable_leaves = self.validate()

    # -----  initialisation  -----

    @classmethod
    @log_call
    def from_config(
        cls,
        cfg,
        drugs: DrugRegistry
    ) -> "CaseManagementTree":
        """Parse and validate a tree description.

        Raises
        ------
        ScenarioError
            For any malformed branch set, leaf, key or unreachable outcome.
        """
        cfg = to_plain_config(cfg) or {}
        layout = DecisionLayout.from_config(cfg.get("fields"))
        input_fields = list(cfg.get("input_fields") or ())
        for name in input_fields:
            if name not in INPUT_FIELDS:
                raise ScenarioError(
                    f"'{name}' is not an input field (expected one of "
                    f"{', '.join(INPUT_FIELDS)})"
                )
        input_mask = layout.mask_of(input_fields)

        nodes: Dict[NodeKey, Node] = {}
        for entry in cfg.get("tree") or ():
            key_cmid, key_mask = layout.encode(entry.get("key") or {})
            key = (key_mask, key_cmid)
            if key in nodes:
                raise ScenarioError(
                    "case-management tree has more than one node for "
                    f"{layout.describe(key_cmid, key_mask)}"
                )
            nodes[key] = cls._parse_node(entry, layout, key_mask, drugs)
        if not nodes:
            raise ScenarioError("case-management tree has no nodes")
        return cls(layout, nodes, input_mask)

    @classmethod
    def _parse_node(cls, entry, layout: DecisionLayout, key_mask: int,
                    drugs: DrugRegistry) -> Node:
        has_branches = "branches" in entry
        has_meds = "medications" in entry
        where = layout.describe(layout.encode(entry.get("key") or {})[0],
                                key_mask)
        if has_branches == has_meds:
            raise ScenarioError(
                f"case-management node {where} needs exactly one of "
                "'branches' or 'medications'"
            )
        if has_meds:
            return Leaf(cls._parse_treatment(entry["medications"] or (),
                                             drugs, where))

        branches: List[Branch] = []
        last_cum_p = 0.0
        for b in entry["branches"] or ():
            outcome_cfg = b.get("outcome") or {}
            if not outcome_cfg:
                raise ScenarioError(
                    f"branch of node {where} must fix at least one field"
                )
            outcome, fields_mask = layout.encode(outcome_cfg)
            if fields_mask & key_mask:
                raise ScenarioError(
                    f"branch of node {where} re-decides field(s) "
                    f"{[f.name for f in layout.fields_in(fields_mask & key_mask)]}"
                )
            if "cum_p" not in b:
                raise ScenarioError(
                    f"branch of node {where} has no cumulative probability "
                    "'cum_p'"
                )
            cum_p = float(b["cum_p"])
            if not 0.0 <= cum_p <= 1.0 + cls.PROBABILITY_TOLERANCE:
                raise ScenarioError(
                    f"node {where}: cumulative probability {cum_p} "
                    "outside [0,1]"
                )
            if cum_p < last_cum_p:
                raise ScenarioError(
                    f"node {where}: cumulative probabilities must not "
                    "decrease"
                )
            last_cum_p = cum_p
            branches.append(Branch(outcome, fields_mask, cum_p))
        if not branches:
            raise ScenarioError(f"branch set {where} has no branches")
        if abs(last_cum_p - 1.0) > cls.PROBABILITY_TOLERANCE:
            raise ScenarioError(
                f"branch set {where} ends at cumulative probability "
                f"{last_cum_p}, expected 1.0"
            )
        return BranchSet(tuple(branches))

    @staticmethod
    def _parse_treatment(meds_cfg, drugs: DrugRegistry,
                         where: str) -> CaseTreatment:
        medications = []
        for m in meds_cfg:
            try:
                abbrev = str(m["drug"])
                qty = float(m["qty"])
            except KeyError as exc:
                raise ScenarioError(
                    f"leaf {where}: medication entry missing {exc}"
                ) from None
            drugs.get(abbrev)
            time = int(m.get("time", 0))
            if qty < 0:
                raise ScenarioError(
                    f"leaf {where}: negative quantity of {abbrev}"
                )
            if not 0 <= time < MINUTES_PER_DAY:
                raise ScenarioError(
                    f"leaf {where}: time of day {time} for {abbrev} must be "
                    f"in [0, {MINUTES_PER_DAY})"
                )
            medications.append(MedicateData(abbrev, qty, time))
        return CaseTreatment(tuple(medications))

    @log_call
    def validate(self) -> int:
        """Walk every reachable path of the tree.

        Returns
        -------
        n_leaves : int
            Number of distinct reachable leaf paths
        """
        starts = []
        morbidity = self.layout.field(MORBIDITY_FIELD)
        age = self.layout.field(AGE_FIELD)
        morbidities = ([Morbidity.UC1, Morbidity.UC2, Morbidity.SEVERE]
                       if morbidity.mask & self.input_mask else [Morbidity.NONE])
        ages = (list(AgeBracket) if age.mask & self.input_mask
                else [AgeBracket.OVER5])
        for m, a in product(morbidities, ages):
            starts.append(morbidity.encode(m) | age.encode(a))

        visited = set()
        n_leaves = 0
        stack = [(cmid, self.input_mask, 0) for cmid in starts]
        while stack:
            cmid, mask, depth = stack.pop()
            key = (mask, cmid & mask)
            node = self._nodes.get(key)
            if node is None:
                raise ScenarioError(
                    "case-management tree has no node for reachable "
                    f"decision {self.layout.describe(cmid, mask)}"
                )
            if key in visited and isinstance(node, BranchSet):
                continue
            visited.add(key)
            if isinstance(node, Leaf):
                n_leaves += 1
                continue
            if depth >= self.max_depth:
                raise ScenarioError(
                    "case-management tree deeper than its "
                    f"{self.max_depth} decision fields"
                )
            for branch in node.branches:
                if branch.fields_mask & mask:
                    raise ScenarioError(
                        "branch re-decides a field already fixed at "
                        f"{self.layout.describe(cmid, mask)}"
                    )
                stack.append((cmid | branch.outcome,
                              mask | branch.fields_mask, depth + 1))

        for mask, cmid in set(self._nodes) - visited:
            logger.warning(
                "case-management node %s is unreachable",
                self.layout.describe(cmid, mask),
            )
        return n_leaves

    # -----  traversal  -----

    def lookup(self, cmid: int, mask: int) -> Node:
        node = self._nodes.get((mask, cmid & mask))
        if node is None:
            raise TreeInconsistencyError(
                "no case-management node for decision "
                f"{self.layout.describe(cmid, mask)}"
            )
        return node

    def traverse(self, cmid: int,
                 rng: RandomStream) -> Tuple[int, Leaf]:
        """Descend from ``cmid`` to a leaf.

        Draws exactly one random value per branch set passed.
        """
        mask = self.input_mask
        while True:
            node = self.lookup(cmid, mask)
            if isinstance(node, Leaf):
                return cmid, node
            if isinstance(node, BranchSet):
                branch = node.select(rng.uniform_01())
                cmid |= branch.outcome
                mask |= branch.fields_mask
            else:
                raise TypeError(f"unknown node type {type(node).__name__}")

    @log_call
    def execute(
        self,
        medicate_queue: MutableSequence[MedicateData],
        pg_state: int,
        within_host: object,
        age_years: float,
        age_group: int,
        rng: RandomStream
    ) -> int:
        """Decide the treatment of one case.

        Parameters
        ----------
        medicate_queue : list of MedicateData
            Queue the prescribed medications are appended to
        pg_state : int
            ``PathogenesisState`` flags of the case
        within_host : object
            Within-host model of the patient; not inspected by the tree
        age_years : float
            Patient age in years
        age_group : int
            Reporting age group of the patient; not inspected by the tree
        rng : RandomStream
            Shared random stream

        Returns
        -------
        cmid : int
            Final decision identifier
        """
        cmid = self.layout.encode_input(pg_state, age_years)
        cmid, leaf = self.traverse(cmid, rng)
        leaf.treatment.apply(medicate_queue, cmid)
        return cmid

    def __len__(self) -> int:
        return len(self._nodes)


class HealthSystem:
    """
    Current case-management configuration.

    Parameters
    ----------
    tree : CaseManagementTree
        Tree used for clinical cases
    memory : SimTime
        A new bout within this time of the last one counts as a second case
    """

    def __init__(self, tree: CaseManagementTree, memory: SimTime):
        self.tree = tree
        self.memory = memory
        self.changes = 0

    @classmethod
    @log_call
    def from_config(cls, cfg, drugs: DrugRegistry,
                    units: TimeUnits) -> "HealthSystem":
        cfg = to_plain_config(cfg)
        if not cfg:
            raise ScenarioError("health system description is empty")
        memory_days = cfg.get("memory_days", 0)
        if memory_days < 0:
            raise ScenarioError("health system memory must not be negative")
        tree = CaseManagementTree.from_config(cfg.get("case_management"),
                                              drugs)
        return cls(tree, units.round_to_ts_from_days(memory_days))

    @log_call
    def change(self, other: "HealthSystem") -> None:
        """Switch to another (pre-validated) health system."""
        self.tree = other.tree
        self.memory = other.memory
        self.changes += 1

