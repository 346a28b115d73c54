"""Tests for the type lattice, symbols and scopes."""

import pytest

from sysyc import PRIMS, ArrayTy, FuncTy, Scope, ScopeError, Symbol, type_name

INT = PRIMS["int"]
FLOAT = PRIMS["float"]
CONST_INT = PRIMS["const int"]

# target type -> the sources it accepts; None stands for "no value"
ACCEPTED = {
    "void": {None, "void"},
    "int": {"int", "float", "const int", "const float"},
    "float": {"int", "float", "const int", "const float"},
    "const int": {"const int", "const float"},
    "const float": {"const int", "const float"},
}

SOURCES = [None, "void", "int", "float", "const int", "const float"]


@pytest.mark.parametrize("source", SOURCES)
@pytest.mark.parametrize("target", list(ACCEPTED))
def test_scalar_accepts_table(target, source):
    src = PRIMS[source] if source is not None else None
    assert PRIMS[target].accepts(src) == (source in ACCEPTED[target])


class TestArrayTy:
    def test_depth_and_base(self):
        t = ArrayTy(ArrayTy(CONST_INT))
        assert t.depth == 2
        assert t.base == CONST_INT
        assert t.element.depth == 1

    def test_lengths_are_not_compared(self):
        a = ArrayTy(ArrayTy(INT, 3), 4)
        b = ArrayTy(ArrayTy(INT, 7), 1)
        assert a.accepts(b)

    def test_depth_must_match(self):
        assert not ArrayTy(ArrayTy(INT)).accepts(ArrayTy(INT))
        assert not ArrayTy(INT).accepts(ArrayTy(ArrayTy(INT)))

    def test_base_uses_scalar_relation(self):
        assert ArrayTy(INT).accepts(ArrayTy(PRIMS["const float"]))
        assert not ArrayTy(CONST_INT).accepts(ArrayTy(INT))

    def test_scalar_is_not_an_array(self):
        assert not ArrayTy(INT).accepts(INT)
        assert not INT.accepts(ArrayTy(INT))


class TestFuncTy:
    def test_pairwise_params(self):
        f = FuncTy(INT, (INT, FLOAT))
        assert f.accepts(FuncTy(INT, (CONST_INT, INT)))
        assert not f.accepts(FuncTy(INT, (INT,)))

    def test_return_type(self):
        assert not FuncTy(PRIMS["void"]).accepts(FuncTy(INT))
        assert FuncTy(INT).accepts(FuncTy(FLOAT))


def test_type_names():
    assert str(CONST_INT) == "const int"
    assert str(ArrayTy(INT)) == "array"
    assert type_name(None) == "null"


class TestScope:
    def test_lookup_walks_parents(self):
        outer = Scope("global")
        outer.insert(Symbol("a", INT))
        inner = Scope("block", outer)
        assert inner.lookup("a").ty == INT
        assert inner.lookup_local("a") is None
        assert inner.lookup("missing") is None

    def test_shadowing(self):
        outer = Scope("global")
        outer.insert(Symbol("a", INT))
        inner = Scope("block", outer)
        inner.insert(Symbol("a", FLOAT))
        assert inner.lookup("a").ty == FLOAT
        assert outer.lookup("a").ty == INT

    def test_duplicate_insert_raises(self):
        scope = Scope("global")
        scope.insert(Symbol("a", INT))
        with pytest.raises(ScopeError):
            scope.insert(Symbol("a", FLOAT))
        assert scope.lookup("a").ty == INT

    def test_is_global(self):
        g = Scope("global")
        assert g.is_global
        assert not Scope("block", g).is_global
