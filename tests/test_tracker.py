"""
Tests for the symbol and lifetime tracker.

Statements are fed to a SymbolTracker one at a time and the fact table is
inspected through lookup() and the tracker's derived-fact helpers.
"""

import pytest

from cguard.analysis.facts import (
    Buffer, BufferOrigin, Capacity, PointerState, TaintLabel,
    DOUBLE_FREE, USE_AFTER_FREE, UNCHECKED_ALLOCATION_USE, LEAKED_ALLOCATION,
)
from cguard.analysis.rules import default_registry
from cguard.analysis.tracker import AnalysisContext, FactTable, SymbolTracker
from cguard.ir import (
    Assign, Call, DeclKind, Declaration, Declare, Eval, ExpUnOp, FunctionUnit, Location,
    Loop, LoopKind, Return, binop, call, const, field_of, index, var,
)


def at(line: int) -> Location:
    return Location("t.c", line, 1)


def declare(name, kind, base="char", dims=(), init=None, line=2) -> Declare:
    return Declare(at(line), Declaration(name, kind, base, list(dims), loc=at(line)), init)


def array(name, size, base="char", line=2) -> Declare:
    return declare(name, DeclKind.ARRAY, base, [const(size)], line=line)


def allocated(name, size=64, line=2) -> Declare:
    return declare(name, DeclKind.POINTER, "char *", init=call("malloc", const(size)), line=line)


def tracker_for(*params: Declaration) -> SymbolTracker:
    unit = FunctionUnit("f", list(params), [], at(1), at(30))
    return SymbolTracker.for_unit(AnalysisContext(unit, default_registry()))


def rule_ids(tracker: SymbolTracker):
    return [f.rule_id for f in tracker.ctx.findings()]


class TestDeclarations:
    """Declarations create facts and nothing else"""

    def test_array_buffer(self):
        t = tracker_for()
        t.observe(array("buf", 10))
        fact = t.lookup("buf")
        assert isinstance(fact, Buffer)
        assert fact.origin == BufferOrigin.FIXED_ARRAY
        assert fact.capacity == Capacity.known(10)
        assert rule_ids(t) == []

    def test_int_array_element_size(self):
        t = tracker_for()
        t.observe(array("nums", 10, base="int"))
        assert t.lookup("nums").byte_capacity == Capacity.known(40)

    def test_unknown_name(self):
        assert tracker_for().lookup("missing") is None

    def test_pointer_declaration(self):
        t = tracker_for()
        t.observe(declare("p", DeclKind.POINTER, "char *"))
        assert t.lookup("p") == PointerState.UNINITIALIZED

    def test_string_initializer(self):
        t = tracker_for()
        t.observe(Declare(at(2), Declaration("msg", DeclKind.ARRAY, "char", [const(6)]), const("hello")))
        assert t.literal_of(var("msg")).length == 6
        assert t.taint_of(var("msg")) == TaintLabel.LITERAL

    def test_redeclaration_in_inner_scope(self):
        t = tracker_for()
        t.observe(array("buf", 10))
        t.observe(array("buf", 20, line=5))
        assert t.lookup("buf").capacity == Capacity.known(20)


class TestLifecycle:
    """Allocation, free and use events"""

    def test_allocation(self):
        t = tracker_for()
        t.observe(allocated("p", 64))
        assert t.lookup("p") == PointerState.ALLOCATED
        buf = t.table.buffers["p"]
        assert buf.origin == BufferOrigin.HEAP_ALLOCATION
        assert buf.capacity == Capacity.known(64)

    def test_allocation_capacity_in_elements(self):
        t = tracker_for()
        t.observe(declare("nums", DeclKind.POINTER, "int *",
                          init=call("malloc", binop("*", const(10), const(4)))))
        assert t.table.buffers["nums"].capacity == Capacity.known(10)

    def test_free(self):
        t = tracker_for()
        t.observe(allocated("p"))
        t.observe(Call(at(3), "free", [var("p")]))
        assert t.lookup("p") == PointerState.FREED
        assert rule_ids(t) == []

    def test_double_free(self):
        t = tracker_for()
        t.observe(allocated("p"))
        t.observe(Call(at(3), "free", [var("p")]))
        t.observe(Call(at(4), "free", [var("p")]))
        assert rule_ids(t) == [DOUBLE_FREE]
        assert t.ctx.findings()[0].location == at(4)

    def test_double_free_of_parameter(self):
        t = tracker_for(Declaration("p", DeclKind.POINTER, "char *", is_param=True))
        t.observe(Call(at(3), "free", [var("p")]))
        t.observe(Call(at(4), "free", [var("p")]))
        assert rule_ids(t) == [DOUBLE_FREE]
        assert t.ctx.findings()[0].location == at(4)

    def test_parameter_used_after_free(self):
        t = tracker_for(Declaration("p", DeclKind.POINTER, "char *", is_param=True))
        t.observe(Call(at(3), "free", [var("p")]))
        t.observe(Call(at(4), "strlen", [var("p")]))
        assert rule_ids(t) == [USE_AFTER_FREE]

    def test_double_free_of_unknown_call_result(self):
        t = tracker_for()
        t.observe(declare("p", DeclKind.POINTER, "char *", init=call("get_buffer")))
        t.observe(Call(at(3), "free", [var("p")]))
        t.observe(Call(at(4), "free", [var("p")]))
        assert rule_ids(t) == [DOUBLE_FREE]
        assert t.open_allocations() == []

    def test_use_after_free(self):
        t = tracker_for()
        t.observe(allocated("p"))
        t.assume(var("p"), True)
        t.observe(Call(at(3), "free", [var("p")]))
        t.observe(Eval(at(4), ExpUnOp("*", var("p"))))
        assert rule_ids(t) == [USE_AFTER_FREE]

    def test_reallocation_resets_state(self):
        t = tracker_for()
        t.observe(allocated("p"))
        t.observe(Call(at(3), "free", [var("p")]))
        t.observe(Call(at(4), "malloc", [const(32)], ret=var("p")))
        assert t.lookup("p") == PointerState.ALLOCATED
        assert t.table.buffers["p"].capacity == Capacity.known(32)

    def test_realloc_in_place(self):
        t = tracker_for()
        t.observe(allocated("p", 16))
        t.observe(Call(at(3), "realloc", [var("p"), const(64)], ret=var("p")))
        assert t.lookup("p") == PointerState.ALLOCATED
        assert t.table.buffers["p"].capacity == Capacity.known(64)
        assert LEAKED_ALLOCATION not in rule_ids(t)

    def test_unchecked_use(self):
        t = tracker_for()
        t.observe(allocated("p"))
        t.observe(Assign(at(3), index(var("p"), const(0)), const(88)))
        assert rule_ids(t) == [UNCHECKED_ALLOCATION_USE]
        assert t.ctx.findings()[0].location == at(3)

    def test_unchecked_star_and_arrow(self):
        t = tracker_for()
        t.observe(allocated("p"))
        t.observe(Eval(at(3), ExpUnOp("*", var("p"))))
        t.observe(Eval(at(4), field_of(var("p"), "next", arrow=True)))
        assert rule_ids(t) == [UNCHECKED_ALLOCATION_USE, UNCHECKED_ALLOCATION_USE]

    def test_passing_to_library_is_not_a_dereference(self):
        t = tracker_for()
        t.observe(allocated("p"))
        t.observe(Call(at(3), "strcpy", [var("p"), const("Data")]))
        t.observe(Call(at(4), "free", [var("p")]))
        assert rule_ids(t) == []

    def test_null_check_suppresses(self):
        t = tracker_for()
        t.observe(allocated("p"))
        t.assume(binop("==", var("p"), const(None)), False)
        t.observe(Call(at(3), "strcpy", [var("p"), const("Data")]))
        assert rule_ids(t) == []

    def test_null_branch_owns_nothing(self):
        t = tracker_for()
        t.observe(allocated("p"))
        t.assume(ExpUnOp("!", var("p")), True)
        assert t.open_allocations() == []

    def test_overwrite_with_null_leaks(self):
        t = tracker_for()
        t.observe(allocated("p"))
        t.observe(Assign(at(5), var("p"), const(None)))
        assert rule_ids(t) == [LEAKED_ALLOCATION]
        assert t.ctx.findings()[0].location == at(5)


class TestEscape:
    """Pointers leaving the function's ownership"""

    def test_return(self):
        t = tracker_for()
        t.observe(allocated("p"))
        t.observe(Return(at(4), var("p")))
        assert t.lookup("p") == PointerState.ESCAPED
        assert t.open_allocations() == []

    def test_unknown_callee(self):
        t = tracker_for()
        t.observe(allocated("p"))
        t.observe(Call(at(3), "register_buffer", [var("p")]))
        assert t.lookup("p") == PointerState.ESCAPED

    def test_alias(self):
        t = tracker_for()
        t.observe(allocated("p"))
        t.observe(declare("q", DeclKind.POINTER, "char *", init=var("p"), line=3))
        assert t.lookup("p") == PointerState.ESCAPED
        assert t.lookup("q") == PointerState.ESCAPED

    def test_store_into_struct(self):
        t = tracker_for(Declaration("node", DeclKind.POINTER, "struct Node *", is_param=True))
        t.observe(allocated("p"))
        t.observe(Assign(at(3), ExpUnOp("*", var("node")), var("p")))
        assert t.lookup("p") == PointerState.ESCAPED


class TestTaint:
    """Taint sources and propagation"""

    def test_parameters_are_external(self):
        t = tracker_for(Declaration("input", DeclKind.POINTER, "char *", is_param=True))
        assert t.taint_of(var("input")) == TaintLabel.EXTERNAL_INPUT

    def test_input_call_taints_destination(self):
        t = tracker_for()
        t.observe(array("line", 50))
        t.observe(Call(at(3), "fgets", [var("line"), const(50), var("stdin")]))
        assert t.taint_of(var("line")) == TaintLabel.EXTERNAL_INPUT

    def test_assignment_propagates(self):
        t = tracker_for(Declaration("input", DeclKind.POINTER, "char *", is_param=True))
        t.observe(declare("s", DeclKind.POINTER, "char *", init=var("input")))
        assert t.taint_of(var("s")) == TaintLabel.EXTERNAL_INPUT

    def test_literals_are_literal(self):
        t = tracker_for()
        assert t.taint_of(const("x")) == TaintLabel.LITERAL
        assert t.taint_of(binop("+", const(1), const(2))) == TaintLabel.LITERAL

    def test_copy_propagates_literal_length(self):
        t = tracker_for()
        t.observe(array("dest", 10))
        t.observe(Call(at(3), "strcpy", [var("dest"), const("abc")]))
        assert t.literal_of(var("dest")).length == 4
        t.observe(Call(at(4), "strcat", [var("dest"), const("de")]))
        assert t.literal_of(var("dest")).length == 6

    def test_scanf_taints_targets(self):
        t = tracker_for()
        t.observe(declare("n", DeclKind.SCALAR, "int"))
        t.observe(Call(at(3), "scanf", [const("%d"), ExpUnOp("&", var("n"))]))
        assert t.taint_of(var("n")) == TaintLabel.EXTERNAL_INPUT


class TestPathStates:
    """Forking, loops and index checks"""

    def test_fork_is_independent(self):
        t = tracker_for()
        t.observe(allocated("p"))
        other = t.fork()
        other.observe(Call(at(3), "free", [var("p")]))
        assert t.lookup("p") == PointerState.ALLOCATED
        assert other.lookup("p") == PointerState.FREED

    def test_fresh_tables_share_nothing(self):
        a, b = FactTable(), FactTable()
        a.buffers["x"] = Buffer("x", BufferOrigin.UNKNOWN, Capacity.unknown())
        assert "x" not in b.buffers

    def test_constant_index(self):
        t = tracker_for()
        t.observe(array("arr", 10, base="int"))
        t.observe(Assign(at(3), index(var("arr"), const(9)), const(0)))
        assert rule_ids(t) == []
        t.observe(Assign(at(4), index(var("arr"), const(10)), const(0)))
        assert rule_ids(t) == ["array-index-out-of-bounds"]

    def test_address_of_end_is_not_access(self):
        t = tracker_for()
        t.observe(array("arr", 10))
        t.observe(Eval(at(3), ExpUnOp("&", index(var("arr"), const(10)))))
        assert rule_ids(t) == []

    def test_enter_loop_forgets_modified_scalars(self):
        t = tracker_for()
        t.observe(declare("i", DeclKind.SCALAR, "int", init=const(0)))
        loop = Loop(at(3), LoopKind.WHILE, binop("<", var("i"), const(10)),
                    body=[Assign(at(4), var("i"), binop("+", var("i"), const(1)))])
        frame = t.enter_loop(loop)
        assert "i" not in t.table.scalars
        assert frame.entry == {"i": 0}
        t.leave_loop()
        assert t.loops == []

    def test_forget_removes_member_paths(self):
        table = FactTable()
        table.taint["user"] = TaintLabel.UNKNOWN
        table.taint["user.name"] = TaintLabel.LITERAL
        table.taint["username"] = TaintLabel.LITERAL
        table.forget("user")
        assert set(table.taint) == {"username"}


@pytest.mark.parametrize("callee", ["strlen", "puts"])
def test_reader_after_free(callee):
    """Read-only helpers dereference their argument"""
    t = tracker_for()
    t.observe(allocated("p"))
    t.assume(var("p"), True)
    t.observe(Call(at(3), "free", [var("p")]))
    t.observe(Call(at(4), callee, [var("p")]))
    assert rule_ids(t) == [USE_AFTER_FREE]
