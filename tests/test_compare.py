"""
Tests for the plan comparator.

Test philosophy:
- Equivalent plans (up to canonicalization) produce no mismatches
- Every divergence is reported once, at the deepest position it applies
- Fail-fast stops at the first mismatch; exhaustive collects them all
- Breadcrumbs name the path to the divergence
"""

from __future__ import annotations

import itertools
import json
from dataclasses import replace
from pathlib import Path

import pytest

from qpcompare.compare import (
    CompareMode,
    CompareResult,
    Mismatch,
    MismatchKind,
    Step,
    Verdict,
    compare,
    compare_plans,
    plans_match,
)
from qpcompare.exceptions import ComparisonCancelled
from qpcompare.loader import load_plan
from qpcompare.plan import (
    BooleanExpr,
    ConditionNode,
    DeferNode,
    DeferPrimary,
    DeferredPart,
    FetchNode,
    FieldPath,
    FlattenNode,
    KeyRenamer,
    NormalizedOperation,
    OperationKind,
    ParallelNode,
    QueryPlan,
    ResultPath,
    SequenceNode,
    SubscriptionNode,
    UnknownNode,
)


# =============================================================================
# Fixtures
# =============================================================================

FIXTURES_DIR = Path(__file__).parent / "fixtures"


def load_fixture(name: str) -> dict:
    """Load a JSON fixture file."""
    path = FIXTURES_DIR / f"{name}.json"
    return json.loads(path.read_text())


def fetch(service: str, operation: str = "{ a }", requires=(), **kwargs) -> FetchNode:
    return FetchNode(
        service=service,
        operation=NormalizedOperation(raw=operation),
        requires=frozenset(FieldPath.parse(r) for r in requires),
        **kwargs,
    )


@pytest.fixture
def legacy_plan() -> QueryPlan:
    return load_plan(load_fixture("legacy_plan"))


@pytest.fixture
def native_reordered() -> QueryPlan:
    return load_plan(load_fixture("native_reordered"))


@pytest.fixture
def native_divergent() -> QueryPlan:
    return load_plan(load_fixture("native_divergent"))


# =============================================================================
# Acceptance Scenarios
# =============================================================================


class TestScenarios:
    """The four reference scenarios."""

    def test_parallel_branch_order_is_equivalent(self) -> None:
        left = ParallelNode(branches=(fetch("A", "{ x }"), fetch("B", "{ y }")))
        right = ParallelNode(branches=(fetch("B", "{ y }"), fetch("A", "{ x }")))

        result = compare(left, right)

        assert result.verdict == Verdict.EQUIVALENT
        assert result.mismatches == ()

    def test_sequence_order_diverges_fail_fast(self) -> None:
        left = SequenceNode(steps=(fetch("A"), fetch("B")))
        right = SequenceNode(steps=(fetch("B"), fetch("A")))

        result = compare(left, right, CompareMode.FAIL_FAST)

        assert result.verdict == Verdict.DIVERGENT
        assert len(result.mismatches) == 1
        mismatch = result.mismatches[0]
        assert mismatch.reason == MismatchKind.SERVICE_MISMATCH
        assert mismatch.path[0] == Step("Sequence", child="step 0")
        assert mismatch.left_description == "A"
        assert mismatch.right_description == "B"

    def test_sequence_order_diverges_exhaustive(self) -> None:
        left = SequenceNode(steps=(fetch("A"), fetch("B")))
        right = SequenceNode(steps=(fetch("B"), fetch("A")))

        result = compare(left, right)

        assert [m.reason for m in result.mismatches] == [
            MismatchKind.SERVICE_MISMATCH,
            MismatchKind.SERVICE_MISMATCH,
        ]
        assert [m.path[0].child for m in result.mismatches] == ["step 0", "step 1"]

    def test_requires_symmetric_difference(self) -> None:
        left = SequenceNode(steps=(fetch("A", requires=("id", "name")),))
        right = SequenceNode(steps=(fetch("A", requires=("id",)),))

        result = compare(left, right)

        assert len(result.mismatches) == 1
        mismatch = result.mismatches[0]
        assert mismatch.reason == MismatchKind.REQUIRES_MISMATCH
        assert mismatch.symmetric_difference == frozenset({"name"})
        assert mismatch.only_left == frozenset({"name"})
        assert mismatch.only_right == frozenset()
        assert mismatch.breadcrumb == "Sequence[step 0] > Fetch.requires"

    def test_missing_else_branch(self) -> None:
        left = ConditionNode(
            if_clause=BooleanExpr("$flag"), then_branch=fetch("A"), else_branch=fetch("B")
        )
        right = ConditionNode(if_clause=BooleanExpr("$flag"), then_branch=fetch("A"))

        result = compare(left, right)

        assert len(result.mismatches) == 1
        mismatch = result.mismatches[0]
        assert mismatch.reason == MismatchKind.BRANCH_PRESENCE_MISMATCH
        assert mismatch.breadcrumb == "Condition.else"
        assert mismatch.left_description == "Fetch (service=B)"
        assert mismatch.right_description == "absent"


# =============================================================================
# Equivalence properties
# =============================================================================


class TestEquivalence:
    """Reflexivity and the canonicalization-invariant cases."""

    def test_reflexive(self, legacy_plan: QueryPlan) -> None:
        assert compare(legacy_plan.node, legacy_plan.node).is_equivalent

    def test_reordered_plan_equivalent(
        self, legacy_plan: QueryPlan, native_reordered: QueryPlan
    ) -> None:
        result = compare_plans(legacy_plan, native_reordered)

        assert result.is_equivalent, [m.to_dict() for m in result.mismatches]

    def test_symmetric_verdict(self, legacy_plan: QueryPlan, native_divergent: QueryPlan) -> None:
        forward = compare_plans(legacy_plan, native_divergent)
        backward = compare_plans(native_divergent, legacy_plan)

        assert forward.verdict == backward.verdict == Verdict.DIVERGENT
        assert len(forward.mismatches) == len(backward.mismatches)

    def test_renamed_variables_match_operation(self) -> None:
        left = fetch(
            "accounts",
            "query($id: ID!) { user(id: $id) { name } }",
            variables_used=frozenset({"id"}),
        )
        right = fetch(
            "accounts",
            "query($userId: ID!) { user(id: $userId) { name } }",
            variables_used=frozenset({"userId"}),
        )

        result = compare(left, right)

        # Operations match positionally; the forwarded variable names do not.
        assert [m.reason for m in result.mismatches] == [MismatchKind.VARIABLE_USAGES_MISMATCH]

    def test_plans_match(self) -> None:
        assert plans_match(fetch("A", "{ b a }"), fetch("A", "{ a b }"))
        assert not plans_match(fetch("A"), fetch("B"))


class TestDivergentFixture:
    """Exhaustive comparison of the divergent fixture."""

    def test_all_mismatches_reported(
        self, legacy_plan: QueryPlan, native_divergent: QueryPlan
    ) -> None:
        result = compare_plans(legacy_plan, native_divergent)

        assert result.counts_by_kind() == {"operation_mismatch": 1, "requires_mismatch": 1}

    def test_breadcrumb_names_branch(
        self, legacy_plan: QueryPlan, native_divergent: QueryPlan
    ) -> None:
        result = compare_plans(legacy_plan, native_divergent)
        requires = next(m for m in result.mismatches if m.reason == MismatchKind.REQUIRES_MISMATCH)

        assert requires.breadcrumb.startswith(
            "Sequence[step 1] > Parallel[branch path=topProducts/@ service=inventory key="
        )
        assert requires.breadcrumb.endswith("> Flatten[topProducts/@] > Fetch.requires")
        assert requires.only_right == frozenset({"... on Product/weight"})

    def test_fail_fast_reports_first(
        self, legacy_plan: QueryPlan, native_divergent: QueryPlan
    ) -> None:
        result = compare_plans(legacy_plan, native_divergent, CompareMode.FAIL_FAST)

        assert len(result.mismatches) == 1
        assert result.mode == CompareMode.FAIL_FAST


# =============================================================================
# Parallel ordering
# =============================================================================


def relabel(node, n: int):
    """Give every fetch in a branch a fresh planner-assigned id and name."""
    if isinstance(node, FlattenNode):
        return replace(node, node=relabel(node.node, n))
    return replace(node, id=str(n), operation_name=f"Query__{node.service}__{n}")


PARALLEL_BRANCHES = (
    fetch("accounts", "{ me { id } }", id="0", operation_name="Query__accounts__0"),
    fetch("inventory", "{ stock }", id="1"),
    FlattenNode(path=ResultPath.parse(["items", "@"]), node=fetch("reviews", "{ body }", id="2")),
    fetch("products", "{ price }"),
)


class TestParallelOrdering:
    """Branch order and planner-assigned fetch labels never affect the verdict."""

    @pytest.mark.parametrize("order", list(itertools.permutations(range(len(PARALLEL_BRANCHES)))))
    def test_every_permutation_equivalent(self, order: tuple[int, ...]) -> None:
        left = ParallelNode(branches=PARALLEL_BRANCHES)
        right = ParallelNode(branches=tuple(PARALLEL_BRANCHES[i] for i in order))

        assert compare(left, right).mismatches == ()

    @pytest.mark.parametrize("order", list(itertools.permutations(range(len(PARALLEL_BRANCHES)))))
    def test_relabelled_permutation_equivalent(self, order: tuple[int, ...]) -> None:
        left = ParallelNode(branches=PARALLEL_BRANCHES)
        right = ParallelNode(
            branches=tuple(relabel(PARALLEL_BRANCHES[i], n) for n, i in enumerate(order))
        )

        assert compare(left, right).mismatches == ()

    def test_swapped_ids_equivalent(self) -> None:
        left = ParallelNode(branches=(fetch("A", "{ x }", id="1"), fetch("B", "{ y }", id="0")))
        right = ParallelNode(branches=(fetch("A", "{ x }", id="0"), fetch("B", "{ y }", id="1")))

        result = compare(left, right)

        assert result.is_equivalent
        assert result.mismatches == ()

    def test_changed_branch_keeps_its_position(self) -> None:
        left = ParallelNode(branches=(fetch("A", "{ x }"), fetch("B", "{ y }")))
        right = ParallelNode(branches=(fetch("A", "{ z }"), fetch("B", "{ y }")))

        result = compare(left, right)

        assert len(result.mismatches) == 1
        mismatch = result.mismatches[0]
        assert mismatch.reason == MismatchKind.OPERATION_MISMATCH
        assert mismatch.breadcrumb.startswith("Parallel[branch service=A key=")
        assert mismatch.breadcrumb.endswith("> Fetch.operation")

    def test_change_among_many_branches_stays_local(self) -> None:
        accounts, inventory, reviews, products = PARALLEL_BRANCHES
        changed = replace(inventory, operation=NormalizedOperation(raw="{ stock warehouse }"))
        left = ParallelNode(branches=PARALLEL_BRANCHES)
        right = ParallelNode(branches=(products, changed, accounts, reviews))

        result = compare(left, right)

        assert [m.reason for m in result.mismatches] == [MismatchKind.OPERATION_MISMATCH]
        assert "service=inventory" in result.mismatches[0].breadcrumb


# =============================================================================
# Per-kind rules
# =============================================================================


class TestKindMismatch:
    """Different node kinds short-circuit the subtree."""

    @pytest.mark.parametrize("mode", list(CompareMode))
    def test_fetch_vs_parallel(self, mode: CompareMode) -> None:
        left = fetch("A")
        right = ParallelNode(branches=(fetch("A"), fetch("B")))

        result = compare(left, right, mode)

        assert len(result.mismatches) == 1
        mismatch = result.mismatches[0]
        assert mismatch.reason == MismatchKind.KIND_MISMATCH
        assert mismatch.path == ()
        assert mismatch.breadcrumb == "<root>"
        assert mismatch.left_description == "Fetch (service=A)"
        assert mismatch.right_description == "Parallel (branches=2)"

    def test_unknown_vs_known(self) -> None:
        result = compare(UnknownNode(kind_name="Teleport"), fetch("A"))

        assert [m.reason for m in result.mismatches] == [MismatchKind.KIND_MISMATCH]


class TestContainers:
    """Sequence and Parallel length and emptiness."""

    def test_sequence_length(self) -> None:
        left = SequenceNode(steps=(fetch("A"), fetch("B")))
        right = SequenceNode(steps=(fetch("A"),))

        result = compare(left, right)

        assert len(result.mismatches) == 1
        mismatch = result.mismatches[0]
        assert mismatch.reason == MismatchKind.LENGTH_MISMATCH
        assert mismatch.left_description == "2 steps: [service=A, service=B]"
        assert mismatch.right_description == "1 steps: [service=A]"

    def test_parallel_length_lists_branches(self) -> None:
        left = ParallelNode(branches=(fetch("A"), fetch("B")))
        right = ParallelNode(branches=(fetch("A"),))

        result = compare(left, right)

        mismatch = result.mismatches[0]
        assert mismatch.reason == MismatchKind.LENGTH_MISMATCH
        assert len(mismatch.only_left) == 1
        assert next(iter(mismatch.only_left)).startswith("service=B key=")

    def test_both_empty_is_a_diagnostic(self) -> None:
        result = compare(SequenceNode(steps=()), SequenceNode(steps=()))

        assert result.is_equivalent
        assert result.diagnostics == ("empty Sequence on both sides at <root>",)

    def test_one_side_empty_is_malformed(self) -> None:
        result = compare(ParallelNode(branches=()), ParallelNode(branches=(fetch("A"),)))

        assert [m.reason for m in result.mismatches] == [MismatchKind.MALFORMED_PLAN]
        assert result.mismatches[0].left_description == "empty Parallel"


class TestFetch:
    """Fetch attribute comparison."""

    def test_operation(self) -> None:
        result = compare(fetch("A", "{ a }"), fetch("A", "{ b }"))

        assert len(result.mismatches) == 1
        mismatch = result.mismatches[0]
        assert mismatch.reason == MismatchKind.OPERATION_MISMATCH
        assert mismatch.breadcrumb == "Fetch.operation"
        assert mismatch.left_description == "{ a }"
        assert mismatch.right_description == "{ b }"

    def test_operation_kind(self) -> None:
        result = compare(
            fetch("A", "{ a }"),
            fetch("A", "{ a }", operation_kind=OperationKind.MUTATION),
        )

        assert [m.reason for m in result.mismatches] == [MismatchKind.OPERATION_KIND_MISMATCH]

    def test_variables_used(self) -> None:
        result = compare(
            fetch("A", variables_used=frozenset({"a"})),
            fetch("A", variables_used=frozenset({"a", "b"})),
        )

        mismatch = result.mismatches[0]
        assert mismatch.reason == MismatchKind.VARIABLE_USAGES_MISMATCH
        assert mismatch.only_right == frozenset({"b"})

    def test_rewrites(self) -> None:
        rewrite = KeyRenamer(path=ResultPath.parse(["a"]), rename_key_to="b")

        result = compare(fetch("A", output_rewrites=(rewrite,)), fetch("A"))

        mismatch = result.mismatches[0]
        assert mismatch.reason == MismatchKind.REWRITE_MISMATCH
        assert mismatch.breadcrumb == "Fetch.output_rewrites"
        assert mismatch.left_description == "[KeyRenamer(a -> b)]"

    def test_every_attribute_reported_exhaustive(self) -> None:
        result = compare(
            fetch("A", "{ a }", requires=("id",)),
            fetch("B", "{ b }", requires=("upc",)),
        )

        assert [m.reason for m in result.mismatches] == [
            MismatchKind.SERVICE_MISMATCH,
            MismatchKind.OPERATION_MISMATCH,
            MismatchKind.REQUIRES_MISMATCH,
        ]

    def test_id_and_operation_name_ignored(self) -> None:
        result = compare(
            fetch("A", id="0", operation_name="Q__a__0"),
            fetch("A", id="7", operation_name="Q__a__3"),
        )

        assert result.is_equivalent


class TestWrappers:
    """Flatten, Condition, Subscription."""

    def test_flatten_path(self) -> None:
        left = FlattenNode(path=ResultPath.parse(["a", "@"]), node=fetch("A"))
        right = FlattenNode(path=ResultPath.parse(["b", "@"]), node=fetch("A"))

        result = compare(left, right)

        assert len(result.mismatches) == 1
        assert result.mismatches[0].reason == MismatchKind.PATH_MISMATCH
        assert result.mismatches[0].breadcrumb == "Flatten.path"

    def test_flatten_recurses(self) -> None:
        left = FlattenNode(path=ResultPath.parse(["a"]), node=fetch("A"))
        right = FlattenNode(path=ResultPath.parse(["a"]), node=fetch("B"))

        result = compare(left, right)

        assert result.mismatches[0].breadcrumb == "Flatten[a] > Fetch.service"

    def test_condition_expression(self) -> None:
        left = ConditionNode(if_clause=BooleanExpr("$a"), then_branch=fetch("A"))
        right = ConditionNode(if_clause=BooleanExpr("$b"), then_branch=fetch("A"))

        result = compare(left, right)

        assert [m.reason for m in result.mismatches] == [MismatchKind.CONDITION_MISMATCH]

    def test_condition_dollar_insignificant(self) -> None:
        left = ConditionNode(if_clause=BooleanExpr("$a"), then_branch=fetch("A"))
        right = ConditionNode(if_clause=BooleanExpr("a"), then_branch=fetch("A"))

        assert compare(left, right).is_equivalent

    def test_condition_branch_recursion(self) -> None:
        left = ConditionNode(if_clause=BooleanExpr("a"), then_branch=fetch("A"))
        right = ConditionNode(if_clause=BooleanExpr("a"), then_branch=fetch("B"))

        result = compare(left, right)

        assert result.mismatches[0].breadcrumb == "Condition[then] > Fetch.service"

    def test_subscription_rest_presence(self) -> None:
        left = SubscriptionNode(primary=fetch("A"), rest=fetch("B"))
        right = SubscriptionNode(primary=fetch("A"))

        result = compare(left, right)

        assert len(result.mismatches) == 1
        assert result.mismatches[0].reason == MismatchKind.BRANCH_PRESENCE_MISMATCH
        assert result.mismatches[0].breadcrumb == "Subscription.rest"

    def test_subscription_primary(self) -> None:
        result = compare(
            SubscriptionNode(primary=fetch("A")),
            SubscriptionNode(primary=fetch("B")),
        )

        assert result.mismatches[0].breadcrumb == "Subscription[primary] > Fetch.service"


class TestDefer:
    """Defer primary and deferred parts."""

    def defer(self, *parts: DeferredPart, subselection: str = "{ id }") -> DeferNode:
        return DeferNode(
            primary=DeferPrimary(subselection=subselection, node=fetch("A")),
            deferred=parts,
        )

    def test_identical(self) -> None:
        part = DeferredPart(depends=frozenset({"0"}), label="x", node=fetch("B"))

        assert compare(self.defer(part), self.defer(part)).is_equivalent

    def test_primary_subselection(self) -> None:
        result = compare(self.defer(subselection="{ id }"), self.defer(subselection="{ name }"))

        assert result.mismatches[0].reason == MismatchKind.DEFER_MISMATCH
        assert result.mismatches[0].breadcrumb == "Defer.primary.subselection"

    def test_deferred_count(self) -> None:
        result = compare(self.defer(DeferredPart(label="x")), self.defer())

        assert [m.reason for m in result.mismatches] == [MismatchKind.LENGTH_MISMATCH]
        assert result.mismatches[0].breadcrumb == "Defer.deferred"

    def test_part_attributes(self) -> None:
        left = self.defer(DeferredPart(depends=frozenset({"0"}), label="x", node=fetch("B")))
        right = self.defer(DeferredPart(depends=frozenset({"1"}), label="y", node=fetch("B")))

        result = compare(left, right)

        assert [m.breadcrumb for m in result.mismatches] == [
            "Defer[deferred 0 label=x] > Deferred.label",
            "Defer[deferred 0 label=x] > Deferred.depends",
        ]
        assert result.mismatches[1].symmetric_difference == frozenset({"0", "1"})

    def test_part_node_recursion(self) -> None:
        left = self.defer(DeferredPart(label="x", node=fetch("B")))
        right = self.defer(DeferredPart(label="x", node=fetch("C")))

        result = compare(left, right)

        assert result.mismatches[0].breadcrumb == (
            "Defer[deferred 0 label=x] > Deferred[node] > Fetch.service"
        )


class TestUnknown:
    """Unknown nodes are compared by kind name and payload."""

    def test_identical_unknown(self) -> None:
        node = UnknownNode(kind_name="Teleport", payload={"to": "mars"})

        assert compare(node, UnknownNode(kind_name="Teleport", payload={"to": "mars"})).is_equivalent

    def test_payload_difference(self) -> None:
        result = compare(
            UnknownNode(kind_name="Teleport", payload={"to": "mars"}),
            UnknownNode(kind_name="Teleport", payload={"to": "venus"}),
        )

        assert [m.reason for m in result.mismatches] == [MismatchKind.MALFORMED_PLAN]
        assert result.mismatches[0].breadcrumb == "Teleport.payload"

    def test_kind_name_difference(self) -> None:
        result = compare(UnknownNode(kind_name="Teleport"), UnknownNode(kind_name="Warp"))

        assert [m.reason for m in result.mismatches] == [MismatchKind.KIND_MISMATCH]


# =============================================================================
# Root containers, modes and cancellation
# =============================================================================


class TestComparePlans:
    """Empty plans at the root."""

    def test_both_empty(self) -> None:
        assert compare_plans(QueryPlan(node=None), QueryPlan(node=None)).is_equivalent

    def test_one_empty(self) -> None:
        result = compare_plans(QueryPlan(node=fetch("A")), QueryPlan(node=None))

        assert len(result.mismatches) == 1
        mismatch = result.mismatches[0]
        assert mismatch.reason == MismatchKind.BRANCH_PRESENCE_MISMATCH
        assert mismatch.breadcrumb == "<root>"
        assert mismatch.right_description == "absent"


class TestModes:
    """Fail-fast is a prefix of exhaustive."""

    def test_fail_fast_prefix(self, legacy_plan: QueryPlan, native_divergent: QueryPlan) -> None:
        exhaustive = compare_plans(legacy_plan, native_divergent, CompareMode.EXHAUSTIVE)
        fail_fast = compare_plans(legacy_plan, native_divergent, CompareMode.FAIL_FAST)

        assert fail_fast.mismatches[0] == exhaustive.mismatches[0]
        assert len(exhaustive.mismatches) >= len(fail_fast.mismatches)

    def test_summary(self) -> None:
        result = compare(
            SequenceNode(steps=(fetch("A"), fetch("B"))),
            SequenceNode(steps=(fetch("B"), fetch("A"))),
        )

        assert result.summary() == {
            "verdict": "divergent",
            "mode": "exhaustive",
            "total": 2,
            "by_kind": {"service_mismatch": 2},
            "diagnostics": 0,
        }


class TestCancellation:
    """should_cancel is polled between nodes."""

    def test_cancel_immediately(self) -> None:
        with pytest.raises(ComparisonCancelled) as exc_info:
            compare(fetch("A"), fetch("B"), should_cancel=lambda: True)

        assert exc_info.value.mismatches_so_far == 0

    def test_cancel_mid_walk(self) -> None:
        calls = []

        def should_cancel() -> bool:
            calls.append(1)
            return len(calls) >= 3

        left = SequenceNode(steps=(fetch("A"), fetch("B")))
        right = SequenceNode(steps=(fetch("B"), fetch("A")))

        with pytest.raises(ComparisonCancelled) as exc_info:
            compare(left, right, should_cancel=should_cancel)

        assert exc_info.value.mismatches_so_far == 1

    def test_never_cancelled(self) -> None:
        result = compare(fetch("A"), fetch("A"), should_cancel=lambda: False)

        assert result.is_equivalent


class TestMismatchRecord:
    """Serialization of a single mismatch."""

    def test_to_dict(self) -> None:
        mismatch = Mismatch(
            path=(Step("Sequence", child="step 0"), Step("Fetch", attribute="requires")),
            reason=MismatchKind.REQUIRES_MISMATCH,
            left_description="{id, name}",
            right_description="{id}",
            left_items=frozenset({"id", "name"}),
            right_items=frozenset({"id"}),
        )

        assert mismatch.to_dict() == {
            "path": "Sequence[step 0] > Fetch.requires",
            "reason": "requires_mismatch",
            "left": "{id, name}",
            "right": "{id}",
            "only_left": ["name"],
            "only_right": [],
        }

    def test_non_set_mismatch_has_no_items(self) -> None:
        mismatch = Mismatch((), MismatchKind.SERVICE_MISMATCH, "A", "B")

        assert not mismatch.is_set_mismatch
        assert mismatch.symmetric_difference == frozenset()
        assert "only_left" not in mismatch.to_dict()

    def test_empty_result(self) -> None:
        result = CompareResult()

        assert result.is_equivalent
        assert result.to_dict()["mismatches"] == []
