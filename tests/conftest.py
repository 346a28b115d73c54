"""
Pytest configuration and shared fixtures for sysyc tests.
"""

import pytest

from sysyc import CodeGen, ErrorSink, analyze, parse_source


@pytest.fixture
def parse():
    """Factory fixture: source text to a Program, failing on front-end errors."""

    def _parse(source: str):
        fe = parse_source(source)
        assert fe.ok, fe.lex_errors + fe.syntax_errors
        return fe.program

    return _parse


@pytest.fixture
def check(parse):
    """Factory fixture: source text to the ErrorSink left by the analyzer."""

    def _check(source: str) -> ErrorSink:
        return analyze(parse(source))

    return _check


@pytest.fixture
def compile_ir(parse):
    """Factory fixture: source text to an llvmlite module.

    The program must be free of semantic errors.
    """

    def _compile(source: str):
        prog = parse(source)
        es = analyze(prog)
        assert not es.has_error(), [d.format() for d in es.errors]
        return CodeGen().build(prog)

    return _compile
