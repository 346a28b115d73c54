#!/usr/bin/env python3
import os, sys
from contextlib import contextmanager
from dataclasses import dataclass, field, fields, is_dataclass
from enum import IntEnum
from typing import List, Dict, Optional, Tuple, Union

from ply.lex import lex
from ply.yacc import yacc
from llvmlite import ir, binding

# array dimensions are never evaluated; every Array type carries this length
ARRAY_LEN_PLACEHOLDER = 0
MODULE_NAME = "module"

# ============================================================
# Diagnostics
# ============================================================

class ErrorKind(IntEnum):
    RESERVED = 0
    VAR_NO_DECL = 1
    FUN_NO_DECL = 2
    VAR_DUPLICATE_DECL = 3
    FUN_DUPLICATE_DECL = 4
    ASSIGN_TYPE_N_MATCH = 5
    OP_TYPE_N_MATCH = 6
    RET_TYPE_N_MATCH = 7
    FUN_PARAM_N_MATCH = 8
    INDEX_NON_ARRAY = 9
    CALL_NON_FUN = 10
    ASSIGN_TO_FUN = 11
    # reserved for constant evaluation, never raised by the analyzer
    UNINITIALIZED_VALUE = 12
    ARRAY_BOUND = 13
    CONST_ASSIGN = 14
    DATA_OVERFLOW = 15
    DIVIDE_ZERO = 16

@dataclass
class Diag:
    kind: ErrorKind
    line: int
    msg: str

    def format(self) -> str:
        return f"Error type {int(self.kind)} at line {self.line}: {self.msg}"

class ErrorSink:
    """Collects semantic diagnostics.

    Once a diagnostic has been kept for a line, further reports on that line
    are dropped unless they have the same kind as the last kept one. This is
    inherited behavior: a failed subexpression usually triggers a follow-up
    error of another kind on the same line, and only the first is useful.
    """

    def __init__(self) -> None:
        self.errors: List[Diag] = []
        self.last_kind = ErrorKind.RESERVED
        self.last_line = -1

    def report(self, kind: ErrorKind, line: int, msg: str) -> bool:
        if line == self.last_line and kind != self.last_kind:
            return False
        self.errors.append(Diag(kind, line, msg))
        self.last_kind = kind
        self.last_line = line
        return True

    def has_error(self) -> bool:
        return bool(self.errors)

    def dump(self, out=None):
        out = out or sys.stdout
        for e in self.errors:
            print(e.format(), file=out)

# ============================================================
# Types
# ============================================================

class Ty:
    name = "base"

    def accepts(self, other: Optional["Ty"]) -> bool:
        """May a value of type `other` flow into a slot of this type?"""
        return False

    def __str__(self):
        return self.name

@dataclass(frozen=True)
class VoidTy(Ty):
    name = "void"

    def accepts(self, other):
        return other is None or isinstance(other, VoidTy)

@dataclass(frozen=True)
class IntTy(Ty):
    name = "int"

    def accepts(self, other):
        return isinstance(other, NUMERIC_TYS)

@dataclass(frozen=True)
class FloatTy(Ty):
    name = "float"

    def accepts(self, other):
        return isinstance(other, NUMERIC_TYS)

@dataclass(frozen=True)
class ConstIntTy(Ty):
    name = "const int"

    def accepts(self, other):
        return isinstance(other, CONST_TYS)

@dataclass(frozen=True)
class ConstFloatTy(Ty):
    name = "const float"

    def accepts(self, other):
        return isinstance(other, CONST_TYS)

@dataclass(frozen=True)
class ArrayTy(Ty):
    element: Ty
    length: int = ARRAY_LEN_PLACEHOLDER
    name = "array"

    @property
    def depth(self) -> int:
        if isinstance(self.element, ArrayTy):
            return self.element.depth + 1
        return 1

    @property
    def base(self) -> Ty:
        if isinstance(self.element, ArrayTy):
            return self.element.base
        return self.element

    def accepts(self, other):
        # lengths are deliberately ignored, only base type and rank matter
        return (isinstance(other, ArrayTy)
                and self.base.accepts(other.base)
                and self.depth == other.depth)

@dataclass(frozen=True)
class FuncTy(Ty):
    ret: Ty
    params: Tuple[Ty, ...] = ()
    name = "function"

    def accepts(self, other):
        if not isinstance(other, FuncTy) or not self.ret.accepts(other.ret):
            return False
        if len(self.params) != len(other.params):
            return False
        return all(p.accepts(q) for p, q in zip(self.params, other.params))

NUMERIC_TYS = (IntTy, FloatTy, ConstIntTy, ConstFloatTy)
CONST_TYS = (ConstIntTy, ConstFloatTy)

def make_prim_types():
    prim: Dict[str, Ty] = {}
    for t in (VoidTy(), IntTy(), FloatTy(), ConstIntTy(), ConstFloatTy()):
        prim[t.name] = t
    return prim

PRIMS = make_prim_types()

def scalar_ty(btype: str, is_const: bool = False) -> Ty:
    return PRIMS[f"const {btype}" if is_const else btype]

def type_name(t: Optional[Ty]) -> str:
    return str(t) if t is not None else "null"

# ============================================================
# Symbols & scopes
# ============================================================

@dataclass
class Symbol:
    id: str
    ty: Ty
    payload: object = None  # storage handle in codegen, unused by the analyzer

class ScopeError(RuntimeError):
    pass

class Scope:
    def __init__(self, name: str, parent: Optional["Scope"] = None):
        self.name = name
        self.parent = parent
        self.symbols: Dict[str, Symbol] = {}

    @property
    def is_global(self) -> bool:
        return self.parent is None

    def lookup_local(self, id: str) -> Optional[Symbol]:
        return self.symbols.get(id)

    def lookup(self, id: str) -> Optional[Symbol]:
        scope = self
        while scope is not None:
            sym = scope.symbols.get(id)
            if sym is not None:
                return sym
            scope = scope.parent
        return None

    def insert(self, sym: Symbol) -> Symbol:
        if sym.id in self.symbols:
            raise ScopeError(f"duplicate symbol '{sym.id}' in scope '{self.name}'")
        self.symbols[sym.id] = sym
        return sym

# ============================================================
# AST
# ============================================================

@dataclass
class Number:
    value: int
    line: int = 0

@dataclass
class LVal:
    name: str
    indices: List["Expr"] = field(default_factory=list)
    line: int = 0

@dataclass
class Paren:
    inner: "Expr"
    line: int = 0

@dataclass
class Call:
    name: str
    args: List["Expr"] = field(default_factory=list)
    line: int = 0

@dataclass
class Unary:
    op: str  # "+", "-", "!"
    operand: "Expr"
    line: int = 0

@dataclass
class Binary:
    op: str  # "+", "-", "*", "/", "%"
    left: "Expr"
    right: "Expr"
    line: int = 0

Expr = Union[Number, LVal, Paren, Call, Unary, Binary]

@dataclass
class CondExpr:
    expr: Expr
    line: int = 0

@dataclass
class Logical:
    op: str  # "&&", "||"
    left: "Cond"
    right: "Cond"
    line: int = 0

@dataclass
class Relational:
    op: str  # "<", ">", "<=", ">=", "==", "!="
    left: "Cond"
    right: "Cond"
    line: int = 0

Cond = Union[CondExpr, Logical, Relational]

@dataclass
class InitList:
    items: List[Union[Expr, "InitList"]] = field(default_factory=list)
    line: int = 0

@dataclass
class VarDef:
    name: str
    dims: List[Expr] = field(default_factory=list)
    init: Optional[Union[Expr, InitList]] = None
    line: int = 0

@dataclass
class Decl:
    is_const: bool
    btype: str  # "int" | "float"
    defs: List[VarDef] = field(default_factory=list)
    line: int = 0

@dataclass
class Assign:
    target: LVal
    value: Expr
    line: int = 0

@dataclass
class ExprStmt:
    expr: Optional[Expr] = None
    line: int = 0

@dataclass
class If:
    cond: Cond
    then: "Stmt"
    orelse: Optional["Stmt"] = None
    line: int = 0

@dataclass
class While:
    cond: Cond
    body: "Stmt"
    line: int = 0

@dataclass
class Break:
    line: int = 0

@dataclass
class Continue:
    line: int = 0

@dataclass
class Return:
    value: Optional[Expr] = None
    line: int = 0

@dataclass
class Block:
    items: List[Union[Decl, "Stmt"]] = field(default_factory=list)
    line: int = 0

Stmt = Union[Assign, ExprStmt, If, While, Break, Continue, Return, Block]

@dataclass
class Param:
    btype: str
    name: str
    # an array parameter's first dimension is written `[]` and stored as None
    dims: List[Optional[Expr]] = field(default_factory=list)
    line: int = 0

@dataclass
class FuncDef:
    ret_type: str  # "void" | "int" | "float"
    name: str
    params: List[Param]
    body: Block
    line: int = 0

@dataclass
class Program:
    items: List[Union[Decl, FuncDef]] = field(default_factory=list)
    line: int = 0

def dump_tree(node, out=None, indent: int = 0):
    """Print the tree one node per line, children indented by four spaces."""
    out = out or sys.stdout
    pad = "    " * indent
    print(f"{pad}{type(node).__name__} (line {node.line})", file=out)
    for f in fields(node):
        if f.name == "line":
            continue
        value = getattr(node, f.name)
        if is_dataclass(value):
            dump_tree(value, out, indent + 1)
        elif isinstance(value, list):
            for child in value:
                if child is None:
                    print(f"{pad}    {f.name}: []", file=out)
                else:
                    dump_tree(child, out, indent + 1)
        elif value is not None:
            print(f"{pad}    {f.name}: {value}", file=out)

# ============================================================
# Lexer
# ============================================================

def decode_int(text: str) -> int:
    if text[:2] in ("0x", "0X"):
        return int(text, 16)
    if len(text) > 1 and text[0] == "0":
        return int(text, 8)
    return int(text)

class SysYLexer:
    reserved = {
        "const": "CONST",
        "int": "INT",
        "float": "FLOAT",
        "void": "VOID",
        "if": "IF",
        "else": "ELSE",
        "while": "WHILE",
        "break": "BREAK",
        "continue": "CONTINUE",
        "return": "RETURN",
    }

    tokens = (
        "IDENT", "INTEGER_CONST",
        "PLUS", "MINUS", "MUL", "DIV", "MOD",
        "ASSIGN", "EQ", "NEQ", "LT", "GT", "LE", "GE",
        "NOT", "AND", "OR",
        "L_PAREN", "R_PAREN", "L_BRACE", "R_BRACE", "L_BRACKT", "R_BRACKT",
        "COMMA", "SEMICOLON",
    ) + tuple(reserved.values())

    t_ignore = " \t\r"

    # string rules are tried longest-regex first, so "==" wins over "="
    t_EQ        = r"=="
    t_NEQ       = r"!="
    t_LE        = r"<="
    t_GE        = r">="
    t_AND       = r"&&"
    t_OR        = r"\|\|"
    t_PLUS      = r"\+"
    t_MINUS     = r"-"
    t_MUL       = r"\*"
    t_DIV       = r"/"
    t_MOD       = r"%"
    t_ASSIGN    = r"="
    t_LT        = r"<"
    t_GT        = r">"
    t_NOT       = r"!"
    t_L_PAREN   = r"\("
    t_R_PAREN   = r"\)"
    t_L_BRACE   = r"\{"
    t_R_BRACE   = r"\}"
    t_L_BRACKT  = r"\["
    t_R_BRACKT  = r"\]"
    t_COMMA     = r","
    t_SEMICOLON = r";"

    def __init__(self):
        self.errors: List[str] = []
        self.lexer = lex(module=self)

    def t_comment(self, t):
        r'//[^\n]*|/\*[\s\S]*?\*/'
        t.lexer.lineno += t.value.count("\n")

    def t_IDENT(self, t):
        r'[A-Za-z_][A-Za-z0-9_]*'
        t.type = self.reserved.get(t.value, "IDENT")
        return t

    def t_INTEGER_CONST(self, t):
        r'0[xX][0-9a-fA-F]+|0[0-7]*|[1-9][0-9]*'
        return t

    def t_newline(self, t):
        r'\n+'
        t.lexer.lineno += len(t.value)

    def t_error(self, t):
        self.errors.append(f"Error type A at Line {t.lexer.lineno}: token recognition error at: '{t.value[0]}'")
        t.lexer.skip(1)

    def tokenize(self, text: str) -> list:
        self.lexer.lineno = 1
        self.lexer.input(text)
        return list(self.lexer)

# ============================================================
# Parser (PLY)
# ============================================================

class SysYParser:
    tokens = SysYLexer.tokens

    # ordered from lowest to highest; IFX, CONDEXP and UNARY are %prec markers
    precedence = (
        ("nonassoc", "IFX"),
        ("nonassoc", "ELSE"),
        ("left", "OR"),
        ("left", "AND"),
        ("left", "EQ", "NEQ"),
        ("left", "LT", "GT", "LE", "GE"),
        ("nonassoc", "CONDEXP"),
        ("left", "PLUS", "MINUS"),
        ("left", "MUL", "DIV", "MOD"),
        ("right", "UNARY"),
    )

    def __init__(self):
        self.errors: List[str] = []
        self._last_error_line = -1
        self.lexer = SysYLexer()
        self.parser = yacc(module=self, start="program", write_tables=False, debug=False)

    def parse(self, text: str) -> Optional[Program]:
        self.lexer.lexer.lineno = 1
        prog = self.parser.parse(text, lexer=self.lexer.lexer)
        if self.errors:
            return None
        return prog

    # ---- top level

    def p_program(self, p):
        """program : comp_unit"""
        p[0] = Program(p[1], line=p[1][0].line if p[1] else 0)

    def p_comp_unit(self, p):
        """comp_unit : comp_unit item
                     | item"""
        if len(p) == 3:
            p[0] = p[1] + p[2]
        else:
            p[0] = p[1]

    def p_item(self, p):
        """item : const_decl
                | var_decl
                | func_def"""
        p[0] = [p[1]]

    # ---- declarations

    def p_btype(self, p):
        """btype : INT
                 | FLOAT"""
        p[0] = p[1]

    def p_const_decl(self, p):
        """const_decl : CONST btype const_defs SEMICOLON"""
        p[0] = Decl(True, p[2], p[3], line=p.lineno(1))

    def p_const_defs(self, p):
        """const_defs : const_defs COMMA const_def
                      | const_def"""
        p[0] = p[1] + [p[3]] if len(p) == 4 else [p[1]]

    def p_const_def(self, p):
        """const_def : IDENT dims ASSIGN init_val"""
        p[0] = VarDef(p[1], p[2], p[4], line=p.lineno(1))

    # `int` and `float` are spelled out here rather than through btype so
    # that a global declaration and a function definition share a prefix
    def p_var_decl(self, p):
        """var_decl : INT var_defs SEMICOLON
                    | FLOAT var_defs SEMICOLON"""
        p[0] = Decl(False, p[1], p[2], line=p.lineno(1))

    def p_var_defs(self, p):
        """var_defs : var_defs COMMA var_def
                    | var_def"""
        p[0] = p[1] + [p[3]] if len(p) == 4 else [p[1]]

    def p_var_def(self, p):
        """var_def : IDENT dims ASSIGN init_val
                   | IDENT dims"""
        init = p[4] if len(p) == 5 else None
        p[0] = VarDef(p[1], p[2], init, line=p.lineno(1))

    def p_dims(self, p):
        """dims : dims L_BRACKT exp R_BRACKT
                | empty"""
        p[0] = p[1] + [p[3]] if len(p) == 5 else []

    def p_init_val_exp(self, p):
        """init_val : exp"""
        p[0] = p[1]

    def p_init_val_list(self, p):
        """init_val : L_BRACE init_vals R_BRACE
                    | L_BRACE R_BRACE"""
        items = p[2] if len(p) == 4 else []
        p[0] = InitList(items, line=p.lineno(1))

    def p_init_vals(self, p):
        """init_vals : init_vals COMMA init_val
                     | init_val"""
        p[0] = p[1] + [p[3]] if len(p) == 4 else [p[1]]

    # ---- functions

    def p_func_def(self, p):
        """func_def : INT IDENT L_PAREN func_params R_PAREN block
                    | FLOAT IDENT L_PAREN func_params R_PAREN block
                    | VOID IDENT L_PAREN func_params R_PAREN block"""
        p[0] = FuncDef(p[1], p[2], p[4], p[6], line=p.lineno(2))

    def p_func_params(self, p):
        """func_params : param_list
                       | empty"""
        p[0] = p[1] or []

    def p_param_list(self, p):
        """param_list : param_list COMMA func_param
                      | func_param"""
        p[0] = p[1] + [p[3]] if len(p) == 4 else [p[1]]

    def p_func_param(self, p):
        """func_param : btype IDENT
                      | btype IDENT L_BRACKT R_BRACKT dims"""
        dims = [None] + p[5] if len(p) == 6 else []
        p[0] = Param(p[1], p[2], dims, line=p.lineno(2))

    # ---- statements

    def p_block(self, p):
        """block : L_BRACE block_items R_BRACE"""
        p[0] = Block(p[2], line=p.lineno(1))

    def p_block_items(self, p):
        """block_items : block_items block_item
                       | empty"""
        p[0] = p[1] + [p[2]] if len(p) == 3 else []

    def p_block_item(self, p):
        """block_item : const_decl
                      | var_decl
                      | stmt"""
        p[0] = p[1]

    def p_stmt_assign(self, p):
        """stmt : lval ASSIGN exp SEMICOLON"""
        p[0] = Assign(p[1], p[3], line=p.lineno(2))

    def p_stmt_expr(self, p):
        """stmt : exp SEMICOLON
                | SEMICOLON"""
        if len(p) == 3:
            p[0] = ExprStmt(p[1], line=p[1].line)
        else:
            p[0] = ExprStmt(None, line=p.lineno(1))

    def p_stmt_block(self, p):
        """stmt : block"""
        p[0] = p[1]

    def p_stmt_if(self, p):
        """stmt : IF L_PAREN cond R_PAREN stmt ELSE stmt
                | IF L_PAREN cond R_PAREN stmt %prec IFX"""
        orelse = p[7] if len(p) == 8 else None
        p[0] = If(p[3], p[5], orelse, line=p.lineno(1))

    def p_stmt_while(self, p):
        """stmt : WHILE L_PAREN cond R_PAREN stmt"""
        p[0] = While(p[3], p[5], line=p.lineno(1))

    def p_stmt_break(self, p):
        """stmt : BREAK SEMICOLON"""
        p[0] = Break(line=p.lineno(1))

    def p_stmt_continue(self, p):
        """stmt : CONTINUE SEMICOLON"""
        p[0] = Continue(line=p.lineno(1))

    def p_stmt_return(self, p):
        """stmt : RETURN exp SEMICOLON
                | RETURN SEMICOLON"""
        value = p[2] if len(p) == 4 else None
        p[0] = Return(value, line=p.lineno(1))

    # ---- expressions

    def p_exp_paren(self, p):
        """exp : L_PAREN exp R_PAREN"""
        p[0] = Paren(p[2], line=p.lineno(1))

    def p_exp_lval(self, p):
        """exp : lval"""
        p[0] = p[1]

    def p_exp_number(self, p):
        """exp : INTEGER_CONST"""
        p[0] = Number(decode_int(p[1]), line=p.lineno(1))

    def p_exp_call(self, p):
        """exp : IDENT L_PAREN call_args R_PAREN"""
        p[0] = Call(p[1], p[3], line=p.lineno(1))

    def p_exp_unary(self, p):
        """exp : PLUS exp %prec UNARY
               | MINUS exp %prec UNARY
               | NOT exp %prec UNARY"""
        p[0] = Unary(p[1], p[2], line=p.lineno(1))

    def p_exp_binary(self, p):
        """exp : exp MUL exp
               | exp DIV exp
               | exp MOD exp
               | exp PLUS exp
               | exp MINUS exp"""
        p[0] = Binary(p[2], p[1], p[3], line=p.lineno(2))

    def p_call_args(self, p):
        """call_args : arg_list
                     | empty"""
        p[0] = p[1] or []

    def p_arg_list(self, p):
        """arg_list : arg_list COMMA exp
                    | exp"""
        p[0] = p[1] + [p[3]] if len(p) == 4 else [p[1]]

    def p_lval(self, p):
        """lval : IDENT dims"""
        p[0] = LVal(p[1], p[2], line=p.lineno(1))

    # ---- conditions

    def p_cond_exp(self, p):
        """cond : exp %prec CONDEXP"""
        p[0] = CondExpr(p[1], line=p[1].line)

    def p_cond_logical(self, p):
        """cond : cond AND cond
                | cond OR cond"""
        p[0] = Logical(p[2], p[1], p[3], line=p.lineno(2))

    def p_cond_relational(self, p):
        """cond : cond LT cond
                | cond GT cond
                | cond LE cond
                | cond GE cond
                | cond EQ cond
                | cond NEQ cond"""
        p[0] = Relational(p[2], p[1], p[3], line=p.lineno(2))

    def p_empty(self, p):
        """empty :"""
        p[0] = None

    def p_error(self, t):
        if t is None:
            line, msg = self.lexer.lexer.lineno, "missing token at '<EOF>'"
        else:
            line, msg = t.lineno, f"mismatched input '{t.value}'"
        # one report per line
        if line == self._last_error_line:
            return
        self._last_error_line = line
        self.errors.append(f"Error type B at line {line}: {msg}")

@dataclass
class FrontEndResult:
    program: Optional[Program]
    tokens: list
    lex_errors: List[str] = field(default_factory=list)
    syntax_errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.program is not None and not self.lex_errors and not self.syntax_errors

def parse_source(text: str) -> FrontEndResult:
    """Lex, then parse. Lexical errors stop before parsing is attempted."""
    lexer = SysYLexer()
    toks = lexer.tokenize(text)
    if lexer.errors:
        return FrontEndResult(None, toks, lexer.errors)
    parser = SysYParser()
    prog = parser.parse(text)
    return FrontEndResult(prog, toks, [], parser.errors)

# ============================================================
# Semantic analysis
# ============================================================

class Analyzer:
    def __init__(self, es: Optional[ErrorSink] = None):
        self.es = es or ErrorSink()
        self.scope = Scope("global")
        self.cur_fn: Optional[Symbol] = None

    @contextmanager
    def _enter(self, scope: Scope):
        saved = self.scope
        self.scope = scope
        try:
            yield scope
        finally:
            self.scope = saved

    def check_program(self, prog: Program) -> ErrorSink:
        for item in prog.items:
            if isinstance(item, FuncDef):
                self._check_fn(item)
            else:
                self._check_decl(item)
        return self.es

    # ---- declarations

    def _check_decl(self, d: Decl):
        base = scalar_ty(d.btype, d.is_const)
        for vd in d.defs:
            if self.scope.lookup_local(vd.name) is not None:
                self.es.report(ErrorKind.VAR_DUPLICATE_DECL, vd.line, f"var {vd.name} duplicate define.")
                continue
            ty = base
            for dim in vd.dims:
                self._expr(dim)
                ty = ArrayTy(ty, ARRAY_LEN_PLACEHOLDER)
            # the initializer cannot see the name it initializes
            if vd.init is not None:
                self._check_init(vd.init, ty, vd.line)
            self.scope.insert(Symbol(vd.name, ty))

    def _check_init(self, init: Union[Expr, InitList], ty: Ty, line: int):
        if isinstance(init, InitList):
            for item in init.items:
                self._check_init(item, ty, line)
            return
        t, _ = self._expr(init)
        # None means the expression already reported; constness is not checked here
        if t is not None and not isinstance(t, NUMERIC_TYS):
            self.es.report(ErrorKind.ASSIGN_TYPE_N_MATCH, line,
                           f"assign type not match: {type_name(ty)}, {type_name(t)}")

    def _check_fn(self, fd: FuncDef):
        if self.scope.lookup_local(fd.name) is not None:
            self.es.report(ErrorKind.FUN_DUPLICATE_DECL, fd.line, f"func {fd.name} duplicate define.")
            return
        params = Scope(f"{fd.name}_params", self.scope)
        param_tys: List[Ty] = []
        for p in fd.params:
            if params.lookup_local(p.name) is not None:
                self.es.report(ErrorKind.VAR_DUPLICATE_DECL, p.line, f"param {p.name} duplicate define.")
                continue
            ty = scalar_ty(p.btype)
            for dim in p.dims:
                if dim is not None:
                    self._expr(dim)
                ty = ArrayTy(ty, ARRAY_LEN_PLACEHOLDER)
            params.insert(Symbol(p.name, ty))
            param_tys.append(ty)
        fn = self.scope.insert(Symbol(fd.name, FuncTy(PRIMS[fd.ret_type], tuple(param_tys))))
        self.cur_fn = fn
        try:
            with self._enter(params):
                self._check_block(fd.body)
        finally:
            self.cur_fn = None

    # ---- statements

    def _check_block(self, b: Block):
        with self._enter(Scope("block", self.scope)):
            for item in b.items:
                if isinstance(item, Decl):
                    self._check_decl(item)
                else:
                    self._check_stmt(item)

    def _check_stmt(self, s: Stmt):
        if isinstance(s, Assign):
            tl = self._lval(s.target)
            tr, _ = self._expr(s.value)
            if isinstance(tl, CONST_TYS):
                self.es.report(ErrorKind.CONST_ASSIGN, s.line, "assign to const value.")
            elif isinstance(tl, FuncTy):
                self.es.report(ErrorKind.ASSIGN_TO_FUN, s.line,
                               f"assign to func: {type_name(tl)}, {type_name(tr)}")
            elif tl is None or not tl.accepts(tr):
                self.es.report(ErrorKind.ASSIGN_TYPE_N_MATCH, s.line,
                               f"assign type not match: {type_name(tl)}, {type_name(tr)}")
        elif isinstance(s, ExprStmt):
            if s.expr is not None:
                self._expr(s.expr)
        elif isinstance(s, Block):
            self._check_block(s)
        elif isinstance(s, If):
            self._check_cond(s.cond)
            self._check_stmt(s.then)
            if s.orelse is not None:
                self._check_stmt(s.orelse)
        elif isinstance(s, While):
            self._check_cond(s.cond)
            self._check_stmt(s.body)
        elif isinstance(s, (Break, Continue)):
            pass
        elif isinstance(s, Return):
            t = self._expr(s.value)[0] if s.value is not None else None
            ret = self.cur_fn.ty.ret
            if not ret.accepts(t):
                self.es.report(ErrorKind.RET_TYPE_N_MATCH, s.line,
                               f"Return type Not match, expected {type_name(ret)} but detected {type_name(t)}.")
        else:
            raise TypeError(f"unknown statement {type(s).__name__}")

    def _check_cond(self, c: Cond):
        if isinstance(c, CondExpr):
            t, _ = self._expr(c.expr)
            if t is not None and not PRIMS["int"].accepts(t):
                self.es.report(ErrorKind.OP_TYPE_N_MATCH, c.line,
                               f"non int type detected in condition: {type_name(t)}.")
        else:
            self._check_cond(c.left)
            self._check_cond(c.right)

    # ---- expressions

    def _lval(self, lv: LVal) -> Optional[Ty]:
        sym = self.scope.lookup(lv.name)
        if sym is None:
            self.es.report(ErrorKind.VAR_NO_DECL, lv.line, f"var {lv.name} not defined.")
            return None
        ty = sym.ty
        for idx in lv.indices:
            it, _ = self._expr(idx)
            if not PRIMS["int"].accepts(it):
                self.es.report(ErrorKind.OP_TYPE_N_MATCH, lv.line, "non int type detected in subscript operator.")
                return None
            if not isinstance(ty, ArrayTy):
                self.es.report(ErrorKind.INDEX_NON_ARRAY, lv.line,
                               f"Using the subscript operator on non-array var {lv.name}")
                return None
            ty = ty.element
        return ty

    def _expr(self, e: Expr) -> Tuple[Optional[Ty], Optional[int]]:
        """Return (static type, literal value); either may be None."""
        if isinstance(e, Number):
            return PRIMS["int"], e.value
        if isinstance(e, Paren):
            return self._expr(e.inner)
        if isinstance(e, LVal):
            return self._lval(e), None
        if isinstance(e, Call):
            return self._call(e), None
        if isinstance(e, Unary):
            t, v = self._expr(e.operand)
            # stricter than the inherited check, which rejected every unary operand
            if not PRIMS["int"].accepts(t):
                self.es.report(ErrorKind.OP_TYPE_N_MATCH, e.line, f"op {e.op} type not match exp")
                return None, None
            if v is not None and e.op == "-":
                v = -v
            elif e.op == "!":
                v = None
            return t, v
        if isinstance(e, Binary):
            t1, _ = self._expr(e.left)
            t2, _ = self._expr(e.right)
            if t1 is not None and t1.accepts(t2):
                return t1, None
            if t2 is not None and t2.accepts(t1):
                return t2, None
            self.es.report(ErrorKind.OP_TYPE_N_MATCH, e.line,
                           f"op type not match exp, types: {type_name(t1)}, {type_name(t2)}.")
            return None, None
        raise TypeError(f"unknown expression {type(e).__name__}")

    def _call(self, e: Call) -> Optional[Ty]:
        sym = self.scope.lookup(e.name)
        if sym is None:
            self.es.report(ErrorKind.FUN_NO_DECL, e.line, f"func {e.name} not defined.")
            return None
        fn = sym.ty
        if not isinstance(fn, FuncTy):
            self.es.report(ErrorKind.CALL_NON_FUN, e.line, f"Call non function: {e.name}")
            return None
        if len(e.args) != len(fn.params):
            self.es.report(ErrorKind.FUN_PARAM_N_MATCH, e.line, f"param of fun call {e.name} not match param length")
            return None
        for arg, pty in zip(e.args, fn.params):
            at, _ = self._expr(arg)
            if at is None or not pty.accepts(at):
                self.es.report(ErrorKind.FUN_PARAM_N_MATCH, e.line,
                               f"param of fun call {e.name} not match type, expected {type_name(pty)} "
                               f"but detected {type_name(at)}")
                return None
        return fn.ret

def analyze(prog: Program, es: Optional[ErrorSink] = None) -> ErrorSink:
    return Analyzer(es).check_program(prog)

# ============================================================
# Code generation
# ============================================================

I32 = ir.IntType(32)
I1 = ir.IntType(1)
ZERO = ir.Constant(I32, 0)

class CodegenError(RuntimeError):
    pass

@dataclass
class BasicBlock:
    block: ir.Block
    # set once a terminator targeting this block has been emitted
    used: bool = False

class NameGen:
    """Register and block numbering for one code generator."""

    def __init__(self):
        self.regs = 0
        self.blocks = 0

    def reg(self, id: Optional[str] = None) -> str:
        n = self.regs
        self.regs += 1
        return f"{id}_r{n}" if id else f"r{n}"

    def block(self, id: Optional[str] = None) -> str:
        n = self.blocks
        self.blocks += 1
        return f"{id}_b{n}" if id else f"b{n}"

def wrap_i32(v: int) -> int:
    return (v + 2**31) % 2**32 - 2**31

_ARITH = {"+": "add", "-": "sub", "*": "mul", "/": "sdiv", "%": "srem"}

class CodeGen:
    """Lowers an analyzed program to an LLVM module.

    The program must already be free of semantic errors; nothing is
    re-validated here. Only `int` scalars are lowered, anything else raises
    CodegenError.
    """

    def __init__(self, name: str = MODULE_NAME):
        self.module = ir.Module(name=name)
        self.builder = ir.IRBuilder()
        self.names = NameGen()
        self.globals = Scope("global")
        self.scope = self.globals
        self.func: Optional[ir.Function] = None
        # loop context stacks: continue targets and break targets
        self.loop_begin: List[BasicBlock] = []
        self.loop_exit: List[BasicBlock] = []

    # ----- compile
    def build(self, prog: Program) -> ir.Module:
        for item in prog.items:
            if isinstance(item, FuncDef):
                self._define_function(item)
            else:
                self._global_decl(item)
        return self.module

    def emit(self, path: str):
        with open(path, "w", encoding="utf-8") as f:
            f.write(str(self.module))

    # ----- helpers
    @contextmanager
    def _scoped(self, scope: Scope):
        saved = self.scope
        self.scope = scope
        try:
            yield scope
        finally:
            self.scope = saved

    @contextmanager
    def _loop(self, begin: BasicBlock, exit: BasicBlock):
        self.loop_begin.append(begin)
        self.loop_exit.append(exit)
        try:
            yield
        finally:
            self.loop_begin.pop()
            self.loop_exit.pop()

    def _new_block(self, kind: str) -> BasicBlock:
        return BasicBlock(self.func.append_basic_block(self.names.block(kind)))

    def _open(self) -> bool:
        return not self.builder.block.is_terminated

    def _branch(self, target: BasicBlock):
        self.builder.branch(target.block)
        target.used = True

    def _cbranch(self, flag: ir.Value, true_bb: BasicBlock, false_bb: BasicBlock):
        self.builder.cbranch(flag, true_bb.block, false_bb.block)
        true_bb.used = True
        false_bb.used = True

    def _enter(self, bb: BasicBlock):
        """Continue emission in `bb`, falling through from an open block."""
        if self._open():
            self._branch(bb)
        self.builder.position_at_end(bb.block)

    def _alloca(self, id: str) -> ir.AllocaInstr:
        with self.builder.goto_entry_block():
            ptr = self.builder.alloca(I32, name=self.names.reg(id))
        return ptr

    def _store(self, value: ir.Value, ptr: ir.Value):
        if value is None or ptr is None:
            raise CodegenError("invalid arguments for store")
        self.builder.store(value, ptr)

    def _require_int_scalars(self, d: Decl):
        if d.btype != "int":
            raise CodegenError(f"'{d.btype}' declarations are not supported by the code generator")
        for vd in d.defs:
            if vd.dims or isinstance(vd.init, InitList):
                raise CodegenError(f"array '{vd.name}' is not supported by the code generator")

    # ----- declarations
    def _global_decl(self, d: Decl):
        self._require_int_scalars(d)
        for vd in d.defs:
            value = self._const_value(vd.init) if vd.init is not None else 0
            # source names are unique across globals and functions, so they are kept as is
            gv = ir.GlobalVariable(self.module, I32, name=vd.name)
            gv.initializer = ir.Constant(I32, value)
            if d.is_const:
                gv.global_constant = True
            self.globals.insert(Symbol(vd.name, scalar_ty("int", d.is_const), gv))

    def _const_value(self, e: Expr) -> int:
        # globals need constant initializers; fold the integer subset we emit
        if isinstance(e, Number):
            return wrap_i32(e.value)
        if isinstance(e, Paren):
            return self._const_value(e.inner)
        if isinstance(e, Unary):
            v = self._const_value(e.operand)
            if e.op == "-":
                return wrap_i32(-v)
            if e.op == "!":
                return int(v == 0)
            return v
        if isinstance(e, Binary):
            l = self._const_value(e.left)
            r = self._const_value(e.right)
            if e.op in ("/", "%"):
                if r == 0:
                    raise CodegenError(f"division by zero in global initializer at line {e.line}")
                q = abs(l) // abs(r)
                if (l < 0) != (r < 0):
                    q = -q
                return wrap_i32(q if e.op == "/" else l - r * q)
            if e.op == "+":
                return wrap_i32(l + r)
            if e.op == "-":
                return wrap_i32(l - r)
            return wrap_i32(l * r)
        if isinstance(e, LVal) and not e.indices:
            sym = self.globals.lookup(e.name)
            gv = sym.payload if sym is not None else None
            if isinstance(gv, ir.GlobalVariable) and gv.global_constant:
                return gv.initializer.constant
        raise CodegenError(f"global initializer at line {e.line} is not a constant expression")

    def _local_decl(self, d: Decl):
        self._require_int_scalars(d)
        for vd in d.defs:
            value = self._expr(vd.init) if vd.init is not None else ZERO
            ptr = self._alloca(vd.name)
            self._store(value, ptr)
            self.scope.insert(Symbol(vd.name, scalar_ty("int", d.is_const), ptr))

    # ----- function body
    def _define_function(self, fd: FuncDef):
        if fd.ret_type == "float":
            raise CodegenError(f"function '{fd.name}': float return type is not supported")
        for p in fd.params:
            if p.btype != "int" or p.dims:
                raise CodegenError(f"function '{fd.name}': parameter '{p.name}' must be an int scalar")

        ret_ir = ir.VoidType() if fd.ret_type == "void" else I32
        func_ty = ir.FunctionType(ret_ir, [I32] * len(fd.params))
        func = ir.Function(self.module, func_ty, name=fd.name)
        fn_ty = FuncTy(PRIMS[fd.ret_type], tuple(PRIMS["int"] for _ in fd.params))
        self.globals.insert(Symbol(fd.name, fn_ty, func))

        self.func = func
        entry = func.append_basic_block(self.names.block(fd.name))
        self.builder.position_at_end(entry)

        # bind params
        params = Scope(f"{fd.name}_params", self.globals)
        for i, p in enumerate(fd.params):
            func.args[i].name = p.name
            ptr = self._alloca(p.name)
            self._store(func.args[i], ptr)
            params.insert(Symbol(p.name, PRIMS["int"], ptr))

        exit_bb = self._new_block("exit")
        with self._scoped(Scope(f"{fd.name}_block", params)):
            self._block_items(fd.body.items, exit_bb)

        if exit_bb.used or self._open():
            # falling off the end: void returns, int yields 0
            self._enter(exit_bb)
            if fd.ret_type == "void":
                self.builder.ret_void()
            else:
                self.builder.ret(ZERO)
        else:
            func.blocks.remove(exit_bb.block)
        self.func = None

    # ----- statements
    def _block_items(self, items: list, next_bb: BasicBlock):
        """Compile a statement list whose normal completion continues at next_bb.

        Only statements that can branch to their continuation get a join
        block; straight-line code keeps emitting into the current block.
        """
        if not items:
            return
        for item in items[:-1]:
            if isinstance(item, (If, While, Block)):
                join = self._new_block("d")
                self._item(item, join)
                self._enter(join)
            else:
                self._item(item, None)
                if not self._open():
                    # code after return/break/continue is unreachable
                    self._enter(self._new_block("d"))
        self._item(items[-1], next_bb)

    def _item(self, item, next_bb: Optional[BasicBlock]):
        if isinstance(item, Decl):
            self._local_decl(item)
        else:
            self._stmt(item, next_bb)

    def _stmt(self, s: Stmt, next_bb: Optional[BasicBlock]):
        if isinstance(s, Assign):
            ptr = self._lval_ptr(s.target)
            self._store(self._expr(s.value), ptr)
        elif isinstance(s, ExprStmt):
            if s.expr is not None:
                self._expr(s.expr)
        elif isinstance(s, Block):
            with self._scoped(Scope("block", self.scope)):
                self._block_items(s.items, next_bb)
        elif isinstance(s, If):
            self._if(s, next_bb)
        elif isinstance(s, While):
            self._while(s, next_bb)
        elif isinstance(s, Break):
            if not self.loop_exit:
                raise CodegenError(f"break outside of a loop at line {s.line}")
            self._branch(self.loop_exit[-1])
        elif isinstance(s, Continue):
            if not self.loop_begin:
                raise CodegenError(f"continue outside of a loop at line {s.line}")
            self._branch(self.loop_begin[-1])
        elif isinstance(s, Return):
            if s.value is not None:
                self.builder.ret(self._expr(s.value))
            else:
                self.builder.ret_void()
        else:
            raise CodegenError(f"unhandled statement {type(s).__name__}")

    def _if(self, s: If, next_bb: BasicBlock):
        true_bb = self._new_block("ifbody")
        if s.orelse is None:
            self._cond(s.cond, true_bb, next_bb)
            self.builder.position_at_end(true_bb.block)
            self._stmt(s.then, next_bb)
            return
        false_bb = self._new_block("elsebody")
        self._cond(s.cond, true_bb, false_bb)
        self.builder.position_at_end(true_bb.block)
        self._stmt(s.then, next_bb)
        if self._open():
            self._branch(next_bb)
        self.builder.position_at_end(false_bb.block)
        self._stmt(s.orelse, next_bb)

    def _while(self, s: While, next_bb: BasicBlock):
        begin = self._new_block("whilebegin")
        body = self._new_block("whilebody")
        self._enter(begin)
        self._cond(s.cond, body, next_bb)
        self.builder.position_at_end(body.block)
        with self._loop(begin, next_bb):
            self._stmt(s.body, begin)
        if self._open():
            self._branch(begin)

    # ----- conditions
    def _cond(self, c: Cond, true_bb: BasicBlock, false_bb: BasicBlock):
        if isinstance(c, Logical):
            if c.op == "&&":
                rhs = self._new_block("true")
                self._cond(c.left, rhs, false_bb)
            else:
                rhs = self._new_block("false")
                self._cond(c.left, true_bb, rhs)
            self.builder.position_at_end(rhs.block)
            self._cond(c.right, true_bb, false_bb)
        elif isinstance(c, CondExpr):
            v = self._expr(c.expr)
            flag = self.builder.icmp_signed("!=", v, ZERO, name=self.names.reg("con"))
            self._cbranch(flag, true_bb, false_bb)
        elif isinstance(c, Relational):
            lhs = self._cond_value(c.left, "mem0")
            rhs = self._cond_value(c.right, "mem1")
            flag = self.builder.icmp_signed(c.op, lhs, rhs, name=self.names.reg())
            self._cbranch(flag, true_bb, false_bb)
        else:
            raise CodegenError(f"unhandled condition {type(c).__name__}")

    def _cond_value(self, c: Cond, slot_name: str) -> ir.Value:
        """Materialize a condition as an i32 0/1."""
        if isinstance(c, CondExpr):
            return self._expr(c.expr)
        slot = self._alloca(slot_name)
        true_bb = self._new_block("true")
        false_bb = self._new_block("false")
        rest_bb = self._new_block("rest")
        self._cond(c, true_bb, false_bb)
        self.builder.position_at_end(true_bb.block)
        self._store(ir.Constant(I32, 1), slot)
        self._branch(rest_bb)
        self.builder.position_at_end(false_bb.block)
        self._store(ZERO, slot)
        self._branch(rest_bb)
        self.builder.position_at_end(rest_bb.block)
        return self.builder.load(slot, name=self.names.reg(slot_name))

    # ----- expressions
    def _lval_ptr(self, lv: LVal) -> ir.Value:
        if lv.indices:
            raise CodegenError(f"subscript on '{lv.name}' is not supported by the code generator")
        sym = self.scope.lookup(lv.name)
        if sym is None:
            raise CodegenError(f"unresolved name '{lv.name}' at codegen (line {lv.line})")
        if isinstance(sym.ty, FuncTy):
            raise CodegenError(f"function '{lv.name}' used as a value (line {lv.line})")
        return sym.payload

    def _expr(self, e: Expr) -> ir.Value:
        if isinstance(e, Number):
            return ir.Constant(I32, wrap_i32(e.value))
        if isinstance(e, Paren):
            return self._expr(e.inner)
        if isinstance(e, LVal):
            return self.builder.load(self._lval_ptr(e), name=self.names.reg(e.name))
        if isinstance(e, Unary):
            v = self._expr(e.operand)
            if e.op == "+":
                return v
            if e.op == "-":
                return self.builder.sub(ZERO, v, name=self.names.reg())
            flag = self.builder.icmp_signed("!=", ZERO, v, name=self.names.reg())
            flag = self.builder.xor(flag, ir.Constant(I1, 1), name=self.names.reg())
            return self.builder.zext(flag, I32, name=self.names.reg())
        if isinstance(e, Binary):
            lhs = self._expr(e.left)
            rhs = self._expr(e.right)
            return getattr(self.builder, _ARITH[e.op])(lhs, rhs, name=self.names.reg())
        if isinstance(e, Call):
            sym = self.scope.lookup(e.name)
            if sym is None or not isinstance(sym.ty, FuncTy):
                raise CodegenError(f"'{e.name}' is not a function (line {e.line})")
            args = [self._expr(a) for a in e.args]
            # a void call produces no value and must stay unnamed
            name = "" if isinstance(sym.ty.ret, VoidTy) else self.names.reg(e.name)
            return self.builder.call(sym.payload, args, name=name)
        raise CodegenError(f"unhandled expr {type(e).__name__}")

def generate(prog: Program, name: str = MODULE_NAME) -> ir.Module:
    return CodeGen(name).build(prog)

def verify_ir(module: ir.Module):
    """Round-trip the textual IR through LLVM and run the verifier."""
    binding.initialize_native_target()
    binding.initialize_native_asmprinter()
    mod = binding.parse_assembly(str(module))
    mod.verify()
    return mod

# ============================================================
# Driver
# ============================================================

def compile_source(text: str, name: str = MODULE_NAME) -> Tuple[Optional[ir.Module], List[str]]:
    """Run the whole pipeline on `text`; returns (module, error lines)."""
    fe = parse_source(text)
    if not fe.ok:
        return None, fe.lex_errors + fe.syntax_errors
    es = analyze(fe.program)
    if es.has_error():
        return None, [d.format() for d in es.errors]
    return generate(fe.program, name), []

def compile_file(path: str, output: Optional[str] = None, show_tokens: bool = False,
                 show_tree: bool = False, verify: bool = False) -> int:
    with open(path, "r", encoding="utf-8") as f:
        text = f.read()

    fe = parse_source(text)
    if fe.lex_errors:
        for e in fe.lex_errors:
            print(e, file=sys.stderr)
        return 1
    if show_tokens:
        for tok in fe.tokens:
            print(f"{tok.type} {tok.value} at Line {tok.lineno}.", file=sys.stderr)
    if fe.syntax_errors or fe.program is None:
        for e in fe.syntax_errors:
            print(e)
        return 1
    if show_tree:
        dump_tree(fe.program)

    es = analyze(fe.program)
    if es.has_error():
        es.dump()
        return 1

    cg = CodeGen(MODULE_NAME)
    module = cg.build(fe.program)
    if verify:
        verify_ir(module)

    if output is None:
        output = os.path.splitext(path)[0] + ".ll"
    cg.emit(output)
    print(f"Wrote {output}")
    return 0

# ============================================================
# CLI
# ============================================================

USAGE = "usage: sysyc FILE [-o OUTPUT] [--tokens] [--tree] [--verify]"

def main(argv: Optional[List[str]] = None):
    args = sys.argv[1:] if argv is None else argv
    out = None
    files: List[str] = []
    flags = {"--tokens": False, "--tree": False, "--verify": False}
    i = 0
    while i < len(args):
        arg = args[i]
        if arg in ("-o", "--output"):
            if i + 1 >= len(args):
                print("error: -o/--output requires a path")
                sys.exit(2)
            out = args[i + 1]
            i += 2
            continue
        if arg in ("-h", "--help"):
            print(USAGE)
            sys.exit(0)
        if arg in flags:
            flags[arg] = True
        else:
            files.append(arg)
        i += 1

    if len(files) != 1:
        print("error: expected exactly one input file")
        print(USAGE)
        sys.exit(2)
    if not os.path.isfile(files[0]):
        print(f"error: no such file: {files[0]}")
        sys.exit(2)

    try:
        rc = compile_file(files[0], output=out, show_tokens=flags["--tokens"],
                          show_tree=flags["--tree"], verify=flags["--verify"])
    except RuntimeError as e:
        print(f"error: {e}")
        rc = 1
    sys.exit(rc)


if __name__ == "__main__":
    main()
