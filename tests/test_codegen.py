"""Tests for LLVM IR generation."""

import pytest
from llvmlite import ir

from sysyc import CodeGen, CodegenError, analyze, parse_source, verify_ir


def blocks(module, func_name: str):
    return list(module.get_global(func_name).blocks)


def find(blist, prefix: str):
    found = [b for b in blist if b.name.startswith(prefix)]
    assert len(found) == 1, [b.name for b in blist]
    return found[0]


def terminator_count(block) -> int:
    return sum(1 for i in block.instructions if i.opname in ("br", "ret"))


def calls_in(block):
    return [i.callee.name for i in block.instructions if i.opname == "call"]


def assert_well_formed(module):
    for func in module.functions:
        for b in func.blocks:
            assert terminator_count(b) == 1, (func.name, b.name)
            assert b.is_terminated


class TestFunctions:
    def test_single_return_keeps_only_entry(self, compile_ir):
        m = compile_ir("int main() { return 0; }")
        assert [b.name for b in blocks(m, "main")] == ["main_b0"]

    def test_void_function_falls_off_end(self, compile_ir):
        m = compile_ir("void f() { }")
        last = blocks(m, "f")[-1]
        assert last.terminator.opname == "ret"
        assert "ret void" in str(m)

    def test_int_function_default_return(self, compile_ir):
        m = compile_ir("int f() { int a = 1; }")
        last = blocks(m, "f")[-1]
        assert last.name.startswith("exit_")
        assert last.terminator.opname == "ret"
        assert_well_formed(m)

    def test_params_are_spilled_to_entry_allocas(self, compile_ir):
        m = compile_ir("int add(int a, int b) { return a + b; }")
        entry = blocks(m, "add")[0]
        allocas = [i.name for i in entry.instructions if i.opname == "alloca"]
        assert len(allocas) == 2
        assert allocas[0].startswith("a_r") and allocas[1].startswith("b_r")
        assert [a.name for a in m.get_global("add").args] == ["a", "b"]

    def test_call(self, compile_ir):
        m = compile_ir("""
int sq(int x) { return x * x; }
void nop() { }
int main() { nop(); return sq(3); }
""")
        entry = blocks(m, "main")[0]
        assert calls_in(entry) == ["nop", "sq"]
        assert_well_formed(m)


class TestControlFlow:
    def test_while_break_continue(self, compile_ir):
        m = compile_ir("""
int main() {
    int x = 0;
    while (1) { if (x) break; else continue; }
    return 0;
}
""")
        bl = blocks(m, "main")
        begin = find(bl, "whilebegin")
        body = find(bl, "whilebody")
        then = find(bl, "ifbody")
        orelse = find(bl, "elsebody")
        # the loop's false edge is its continuation
        loop_next = begin.terminator.operands[2]
        assert begin.terminator.operands[1] is body
        assert then.terminator.operands == [loop_next]
        assert orelse.terminator.operands == [begin]
        assert loop_next.terminator.opname == "ret"
        assert_well_formed(m)

    def test_short_circuit_and(self, compile_ir):
        m = compile_ir("""
int a() { return 1; }
int b() { return 0; }
int main() {
    if (a() && b()) return 1;
    return 0;
}
""")
        entry = blocks(m, "main")[0]
        assert calls_in(entry) == ["a"]
        _, rhs, on_false = entry.terminator.operands
        assert calls_in(rhs) == ["b"]
        # a false left operand skips straight to the if's continuation
        assert calls_in(on_false) == []
        assert rhs.terminator.operands[2] is on_false
        assert_well_formed(m)

    def test_short_circuit_or(self, compile_ir):
        m = compile_ir("""
int a() { return 1; }
int b() { return 0; }
int main() {
    if (a() || b()) return 1;
    return 0;
}
""")
        entry = blocks(m, "main")[0]
        _, on_true, rhs = entry.terminator.operands
        assert calls_in(rhs) == ["b"]
        assert on_true.name.startswith("ifbody")

    def test_if_else_joins(self, compile_ir):
        m = compile_ir("""
int main() {
    int r;
    if (1 < 2) r = 1; else r = 2;
    return r;
}
""")
        bl = blocks(m, "main")
        then = find(bl, "ifbody")
        orelse = find(bl, "elsebody")
        assert then.terminator.operands == orelse.terminator.operands
        assert_well_formed(m)

    def test_nested_relational_is_materialized(self, compile_ir):
        m = compile_ir("""
int main() {
    int a = 1;
    int b = 2;
    if (a < b == 1) return 1;
    return 0;
}
""")
        bl = blocks(m, "main")
        assert any(b.name.startswith("rest_") for b in bl)
        entry_allocas = [i.name for i in bl[0].instructions if i.opname == "alloca"]
        assert any(n.startswith("mem0_") for n in entry_allocas)
        assert_well_formed(m)

    def test_code_after_return_is_isolated(self, compile_ir):
        m = compile_ir("int main() { return 1; return 2; }")
        bl = blocks(m, "main")
        assert len(bl) == 2
        assert_well_formed(m)

    def test_nested_loops(self, compile_ir):
        m = compile_ir("""
int main() {
    int i = 0;
    int s = 0;
    while (i < 10) {
        int j = 0;
        while (j < i) {
            if (j == 5) break;
            s = s + j;
            j = j + 1;
        }
        if (s > 100 || i == 7) continue;
        i = i + 1;
    }
    return s;
}
""")
        assert_well_formed(m)
        verify_ir(m)


class TestGlobals:
    def test_initializers_are_folded(self, compile_ir):
        m = compile_ir("const int N = 2 + 3 * 4;\nint g = -N / 4;\nint h;\nint main() { return g; }")
        gvs = {gv.name: gv for gv in m.global_values if isinstance(gv, ir.GlobalVariable)}
        assert gvs["N"].initializer.constant == 14
        assert gvs["N"].global_constant
        # division truncates toward zero
        assert gvs["g"].initializer.constant == -3
        assert gvs["h"].initializer.constant == 0
        assert not gvs["g"].global_constant

    def test_global_named_like_generated_register(self, compile_ir):
        m = compile_ir("int a;\nint a_r0() { return a; }\nint main() { return a_r0(); }")
        assert isinstance(m.get_global("a"), ir.GlobalVariable)
        assert isinstance(m.get_global("a_r0"), ir.Function)
        verify_ir(m)

    def test_local_initializer_reads_outer_name(self, compile_ir):
        m = compile_ir("int a = 5;\nint main() { int a = a + 1; return a; }")
        entry = blocks(m, "main")[0]
        loads = [i for i in entry.instructions if i.opname == "load"]
        assert loads[0].operands[0] is m.get_global("a")
        assert_well_formed(m)

    def test_non_constant_initializer(self, parse):
        prog = parse("int f() { return 1; }\nint g = f();")
        with pytest.raises(CodegenError):
            CodeGen().build(prog)


class TestUnsupported:
    @pytest.mark.parametrize("source", [
        "float x;",
        "int a[3];",
        "float f() { return 1; }",
        "int f(int a[]) { return 0; }",
        "int main() { int a[2]; return 0; }",
    ])
    def test_raises(self, parse, source):
        with pytest.raises(CodegenError):
            CodeGen().build(parse(source))

    def test_break_outside_loop(self, parse):
        prog = parse("int main() { break; return 0; }")
        assert not analyze(prog).has_error()
        with pytest.raises(CodegenError):
            CodeGen().build(prog)


def test_name_counters_are_per_generator():
    src = "int main() { int a = 1; while (a) a = a - 1; return a; }"
    first = str(CodeGen().build(parse_source(src).program))
    second = str(CodeGen().build(parse_source(src).program))
    assert first == second


def test_emit_writes_module_text(tmp_path):
    prog = parse_source("int main() { return 3; }").program
    cg = CodeGen()
    cg.build(prog)
    out = tmp_path / "out.ll"
    cg.emit(str(out))
    text = out.read_text()
    assert "main" in text
    assert "ret i32 3" in text
