"""
C to cguard IR frontend.

This module translates C source code to per-function analysis units using
tree-sitter for parsing. It handles:
- Function definitions and their parameters
- Local declarations, including arrays, pointers and struct variables
- Expression statements (calls, assignments, ++/--, compound assignment)
- Structured control flow (if/else, while, do/while, for, switch)
- Struct and typedef layouts, global and local
- Integer #define macros and enum constants
- String literal escapes and adjacent literal concatenation
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple, Any

try:
    import tree_sitter_c as tsc
    from tree_sitter import Language, Parser, Node as TSNode
    TREE_SITTER_C_AVAILABLE = True
except ImportError:
    TREE_SITTER_C_AVAILABLE = False
    TSNode = Any

from cguard.analysis.evaluator import Evaluator, literal_byte_length, normalize_type
from cguard.ir.decls import Declaration, DeclKind, FieldLayout, StructLayout
from cguard.ir.statements import (
    Stmt, Declare, Assign, Call, Eval, Return, Break, Continue,
    If, Loop, LoopKind, Switch, SwitchCase,
)
from cguard.ir.types import (
    Location, Exp, ExpVar, ExpConst, ExpBinOp, ExpUnOp, ExpFieldAccess,
    ExpIndex, ExpCast, ExpSizeof, ExpCall, ExpTernary,
)
from cguard.ir.unit import FunctionUnit, TranslationUnit


_SIMPLE_ESCAPES = {
    "n": "\n", "t": "\t", "r": "\r", "a": "\a", "b": "\b", "f": "\f", "v": "\v",
    "\\": "\\", "'": "'", '"': '"', "?": "?", "e": "\x1b",
}

_HEX = "0123456789abcdefABCDEF"


def decode_c_string(body: str) -> str:
    """
    Decode the escapes of a C string or character literal body.

    "\\x41\\n" -> "A\\n". Octal escapes take up to three digits, hex
    escapes take every following hex digit.
    """
    out = []
    i = 0
    while i < len(body):
        ch = body[i]
        if ch != "\\" or i + 1 == len(body):
            out.append(ch)
            i += 1
            continue
        nxt = body[i + 1]
        if nxt in _SIMPLE_ESCAPES:
            out.append(_SIMPLE_ESCAPES[nxt])
            i += 2
        elif nxt in "01234567":
            j = i + 1
            while j < len(body) and j < i + 4 and body[j] in "01234567":
                j += 1
            out.append(chr(int(body[i + 1:j], 8) & 0xFF))
            i = j
        elif nxt == "x":
            j = i + 2
            while j < len(body) and body[j] in _HEX:
                j += 1
            if j == i + 2:
                out.append("x")
            else:
                out.append(chr(int(body[i + 2:j], 16) & 0xFF))
            i = j
        elif nxt in "uU":
            width = 4 if nxt == "u" else 8
            digits = body[i + 2:i + 2 + width]
            if len(digits) == width and all(c in _HEX for c in digits):
                out.append(chr(int(digits, 16)))
                i += 2 + width
            else:
                out.append(nxt)
                i += 2
        elif nxt == "\n":
            # line continuation
            i += 2
        else:
            out.append(nxt)
            i += 2
    return "".join(out)


def parse_number(text: str) -> Optional[Exp]:
    """Integer or floating constant with C suffixes removed"""
    t = text.replace("'", "").lower()
    try:
        if t.startswith("0x"):
            return ExpConst(int(t.rstrip("ul"), 16))
        if t.startswith("0b"):
            return ExpConst(int(t.rstrip("ul"), 2))
        if "." in t or "e" in t:
            return ExpConst(float(t.rstrip("fl")))
        t = t.rstrip("ul")
        if len(t) > 1 and t.startswith("0"):
            return ExpConst(int(t, 8))
        return ExpConst(int(t))
    except ValueError:
        return None


@dataclass
class _Scope:
    """Translation state for one function body"""
    structs: Dict[str, StructLayout]
    constants: Dict[str, int]
    names: Set[str] = field(default_factory=set)
    before: List[Stmt] = field(default_factory=list)
    after: List[Stmt] = field(default_factory=list)


class CFrontend:
    """
    Translates C source code to analysis units.

    Usage:
        frontend = CFrontend()
        tu = frontend.translate(source_code, "example.c")
        for unit in tu.functions:
            ...
    """

    def __init__(self):
        if not TREE_SITTER_C_AVAILABLE:
            raise ImportError(
                "tree-sitter-c is required. "
                "Install with: pip install tree-sitter-c"
            )
        self.parser = Parser(Language(tsc.language()))

        # State during translation
        self._filename = "<unknown>"
        self._source = b""
        self._scope: Optional[_Scope] = None

    def translate(self, source_code: str, filename: str = "<unknown>") -> TranslationUnit:
        """Translate C source code to a TranslationUnit."""
        self._filename = filename
        self._source = bytes(source_code, "utf8")

        tree = self.parser.parse(self._source)
        tu = TranslationUnit(filename)
        self._scope = _Scope(tu.structs, tu.constants)
        try:
            self._collect_types(tree.root_node, tu.structs, tu.constants)
        finally:
            self._scope = None
        self._translate_items(tree.root_node, tu)
        return tu

    def translate_file(self, path: str) -> TranslationUnit:
        source = Path(path).read_text(encoding="utf-8", errors="replace")
        return self.translate(source, str(path))

    def _translate_items(self, node: TSNode, tu: TranslationUnit) -> None:
        for child in node.children:
            if child.type == "function_definition":
                unit = self._translate_function(child, tu)
                if unit is not None:
                    tu.functions.append(unit)
            elif child.type in ("preproc_ifdef", "preproc_ifndef", "preproc_if",
                                "preproc_else", "preproc_elif", "linkage_specification",
                                "declaration_list"):
                self._translate_items(child, tu)

    # =========================================================================
    # Types and macros
    # =========================================================================

    def _collect_types(self, node: TSNode, structs: Dict[str, StructLayout],
                       constants: Dict[str, int]) -> None:
        """Struct layouts, typedefs, macros and enums under node, in source order"""
        for child in node.children:
            kind = child.type
            if kind == "function_definition":
                continue
            if kind == "preproc_def":
                self._define(child, constants)
            elif kind == "struct_specifier":
                self._struct(child, structs)
            elif kind == "enum_specifier":
                self._enum(child, constants)
            elif kind == "type_definition":
                self._typedef(child, structs, constants)
            elif kind in ("declaration", "field_declaration"):
                type_node = child.child_by_field_name("type")
                if type_node is not None and type_node.type == "struct_specifier":
                    self._struct(type_node, structs)
                elif type_node is not None and type_node.type == "enum_specifier":
                    self._enum(type_node, constants)
            elif child.child_count:
                self._collect_types(child, structs, constants)

    def _define(self, node: TSNode, constants: Dict[str, int]) -> None:
        name = node.child_by_field_name("name")
        value = node.child_by_field_name("value")
        if name is None or value is None:
            return
        text = self._text(value).strip()
        if not text:
            return
        exp = self._parse_constant_expression(text)
        folded = Evaluator(constants=constants).try_constant(exp) if exp is not None else None
        if folded is not None:
            constants[self._text(name)] = folded

    def _parse_constant_expression(self, text: str) -> Optional[Exp]:
        """Parse a macro body as an expression"""
        wrapper = f"long __cguard_value = ({text});"
        tree = self.parser.parse(bytes(wrapper, "utf8"))
        if tree.root_node.has_error:
            return None
        saved = self._source, self._scope
        self._source = bytes(wrapper, "utf8")
        self._scope = _Scope({}, {})
        try:
            decl = tree.root_node.named_children[0] if tree.root_node.named_children else None
            init = decl.child_by_field_name("declarator") if decl is not None else None
            value = init.child_by_field_name("value") if init is not None else None
            return self._expression(value) if value is not None else None
        finally:
            self._source, self._scope = saved

    def _enum(self, node: TSNode, constants: Dict[str, int]) -> None:
        body = node.child_by_field_name("body")
        if body is None:
            return
        next_value = 0
        ev = Evaluator(constants=constants)
        for item in body.named_children:
            if item.type != "enumerator":
                continue
            name = self._text(item.child_by_field_name("name"))
            value = item.child_by_field_name("value")
            if value is not None:
                folded = ev.try_constant(self._parse_constant_expression(self._text(value)))
                if folded is None:
                    continue
                next_value = folded
            constants[name] = next_value
            next_value += 1

    def _struct(self, node: TSNode, structs: Dict[str, StructLayout]) -> Optional[StructLayout]:
        name_node = node.child_by_field_name("name")
        body = node.child_by_field_name("body")
        name = self._text(name_node) if name_node is not None else ""
        if body is None:
            return structs.get(name) if name else None
        layout = StructLayout(name or f"<anonymous@{node.start_point[0] + 1}>")
        for member in body.named_children:
            if member.type != "field_declaration":
                continue
            type_node = member.child_by_field_name("type")
            if type_node is None:
                continue
            if type_node.type == "struct_specifier":
                self._struct(type_node, structs)
            base = self._type_text(type_node)
            for declarator in member.children_by_field_name("declarator"):
                unwrapped = self._unwrap(base, declarator)
                if unwrapped is None:
                    continue
                fname, kind, ftype, dims = unwrapped
                layout.fields.append(FieldLayout(fname, kind, ftype, dims))
        if name:
            structs[name] = layout
        return layout

    def _typedef(self, node: TSNode, structs: Dict[str, StructLayout],
                 constants: Dict[str, int]) -> None:
        type_node = node.child_by_field_name("type")
        if type_node is None:
            return
        layout = None
        if type_node.type == "struct_specifier":
            layout = self._struct(type_node, structs)
        elif type_node.type == "enum_specifier":
            self._enum(type_node, constants)
        if layout is None:
            return
        for declarator in node.children_by_field_name("declarator"):
            if declarator.type == "type_identifier":
                structs[self._text(declarator)] = layout

    def _type_text(self, node: TSNode) -> str:
        if node.type == "struct_specifier":
            name = node.child_by_field_name("name")
            if name is not None:
                return f"struct {self._text(name)}"
            return f"struct <anonymous@{node.start_point[0] + 1}>"
        return " ".join(self._text(node).split())

    # =========================================================================
    # Declarators
    # =========================================================================

    def _unwrap(self, base: str, node: TSNode) -> Optional[Tuple[str, DeclKind, str, List[Exp]]]:
        """
        (name, kind, base type, dims) for a declarator.

        `char *names[4]` is an ARRAY of "char *"; `int m[3][4]` has dims
        [3, 4]. Returns None for function declarators.
        """
        stars = 0
        dims: List[Exp] = []
        while node is not None:
            kind = node.type
            if kind in ("identifier", "field_identifier", "type_identifier"):
                break
            if kind == "pointer_declarator":
                stars += 1
                node = node.child_by_field_name("declarator")
            elif kind == "array_declarator":
                size = node.child_by_field_name("size")
                dims.append(self._expression(size) if size is not None else None)
                node = node.child_by_field_name("declarator")
            elif kind == "parenthesized_declarator":
                node = node.named_children[0] if node.named_children else None
            elif kind == "init_declarator":
                node = node.child_by_field_name("declarator")
            else:
                return None
        if node is None:
            return None
        dims.reverse()
        type_name = base + (" " + "*" * stars if stars else "")
        if dims:
            kind = DeclKind.ARRAY
        elif stars:
            kind = DeclKind.POINTER
        elif base.startswith("struct ") or self._is_struct_name(base):
            kind = DeclKind.STRUCT
        else:
            kind = DeclKind.SCALAR
        return self._text(node), kind, type_name, dims

    def _is_struct_name(self, base: str) -> bool:
        return self._scope is not None and normalize_type(base) in self._scope.structs

    # =========================================================================
    # Functions
    # =========================================================================

    def _translate_function(self, node: TSNode, tu: TranslationUnit) -> Optional[FunctionUnit]:
        """Translate a function definition"""
        declarator = node.child_by_field_name("declarator")
        while declarator is not None and declarator.type in ("pointer_declarator", "parenthesized_declarator"):
            declarator = declarator.child_by_field_name("declarator") or (
                declarator.named_children[0] if declarator.named_children else None)
        if declarator is None or declarator.type != "function_declarator":
            return None
        name_node = declarator.child_by_field_name("declarator")
        if name_node is None or name_node.type != "identifier":
            return None

        body = node.child_by_field_name("body")
        structs = dict(tu.structs)
        constants = dict(tu.constants)
        self._scope = _Scope(structs, constants)
        try:
            if body is not None:
                self._collect_types(body, structs, constants)
            params = self._parameters(declarator)
            self._scope.names.update(p.name for p in params)
            stmts = self._block(body) if body is not None else []
        finally:
            self._scope = None

        end = body if body is not None else node
        return FunctionUnit(
            name=self._text(name_node),
            params=params,
            body=stmts,
            loc=self._location(node),
            end_loc=Location(self._filename, end.end_point[0] + 1, end.end_point[1]),
            structs=structs,
            constants=constants,
            syntax_errors=self._syntax_errors(node),
        )

    def _parameters(self, declarator: TSNode) -> List[Declaration]:
        params = []
        params_node = declarator.child_by_field_name("parameters")
        if params_node is None:
            return params
        for child in params_node.named_children:
            if child.type != "parameter_declaration":
                continue
            type_node = child.child_by_field_name("type")
            decl_node = child.child_by_field_name("declarator")
            if type_node is None or decl_node is None:
                continue
            unwrapped = self._unwrap(self._type_text(type_node), decl_node)
            if unwrapped is None:
                continue
            name, kind, type_name, dims = unwrapped
            if kind == DeclKind.ARRAY:
                # array parameters decay to pointers
                kind = DeclKind.POINTER
                type_name = type_name + (" *" if not type_name.endswith("*") else "*")
                dims = []
            params.append(Declaration(name, kind, type_name, dims, is_param=True,
                                      loc=self._location(child)))
        return params

    def _syntax_errors(self, node: TSNode) -> List[Location]:
        if not node.has_error:
            return []
        errors = []
        stack = [node]
        while stack:
            current = stack.pop()
            if current.type == "ERROR" or current.is_missing:
                errors.append(self._location(current))
                continue
            if current.has_error:
                stack.extend(reversed(current.children))
        return errors

    # =========================================================================
    # Statements
    # =========================================================================

    def _block(self, node: TSNode) -> List[Stmt]:
        """Translate a compound statement"""
        stmts = []
        for child in node.named_children:
            stmts.extend(self._statement(child))
        return stmts

    def _body(self, node: Optional[TSNode]) -> List[Stmt]:
        if node is None:
            return []
        return self._statement(node)

    def _statement(self, node: TSNode) -> List[Stmt]:
        """Translate a statement to zero or more IR statements"""
        kind = node.type
        loc = self._location(node)
        if kind == "compound_statement":
            return self._block(node)
        if kind == "expression_statement":
            inner = node.named_children[0] if node.named_children else None
            if inner is None:
                return []
            return self._flush(self._effect(inner, loc))
        if kind == "declaration":
            return self._flush(self._declaration(node))
        if kind == "return_statement":
            value = node.named_children[0] if node.named_children else None
            exp = self._expression(value) if value is not None else None
            return self._flush([Return(loc, exp)])
        if kind == "if_statement":
            return self._if(node, loc)
        if kind == "while_statement":
            condition, pre = self._condition(node.child_by_field_name("condition"))
            body = self._body(node.child_by_field_name("body"))
            return pre + [Loop(loc, LoopKind.WHILE, condition, body, update=list(pre))]
        if kind == "do_statement":
            body = self._body(node.child_by_field_name("body"))
            condition, pre = self._condition(node.child_by_field_name("condition"))
            return [Loop(loc, LoopKind.DO_WHILE, condition, body, update=pre)]
        if kind == "for_statement":
            return self._for(node, loc)
        if kind == "switch_statement":
            return self._switch(node, loc)
        if kind == "break_statement":
            return [Break(loc)]
        if kind == "continue_statement":
            return [Continue(loc)]
        if kind == "labeled_statement":
            inner = node.named_children[-1] if node.named_children else None
            return self._statement(inner) if inner is not None and inner.type != "statement_identifier" else []
        # goto, preprocessor lines, empty statements, type-only declarations
        return []

    def _flush(self, stmts: List[Stmt]) -> List[Stmt]:
        """Wrap stmts with side effects lifted out of their expressions"""
        before, after = self._scope.before, self._scope.after
        self._scope.before, self._scope.after = [], []
        return before + stmts + after

    def _condition(self, node: Optional[TSNode]) -> Tuple[Optional[Exp], List[Stmt]]:
        if node is None:
            return None, []
        exp = self._expression(node)
        return exp, self._flush([])

    def _if(self, node: TSNode, loc: Location) -> List[Stmt]:
        condition, pre = self._condition(node.child_by_field_name("condition"))
        then_body = self._body(node.child_by_field_name("consequence"))
        alternative = node.child_by_field_name("alternative")
        if alternative is not None and alternative.type == "else_clause":
            alternative = alternative.named_children[0] if alternative.named_children else None
        else_body = self._body(alternative)
        return pre + [If(loc, condition, then_body, else_body)]

    def _for(self, node: TSNode, loc: Location) -> List[Stmt]:
        init: List[Stmt] = []
        initializer = node.child_by_field_name("initializer")
        if initializer is not None:
            if initializer.type == "declaration":
                init = self._flush(self._declaration(initializer))
            else:
                init = self._flush(self._effect(initializer, self._location(initializer)))
        condition, pre = self._condition(node.child_by_field_name("condition"))
        update: List[Stmt] = []
        update_node = node.child_by_field_name("update")
        if update_node is not None:
            update = self._flush(self._effect(update_node, self._location(update_node)))
        body = self._body(node.child_by_field_name("body"))
        return [Loop(loc, LoopKind.FOR, condition, body, init + pre, update + pre)]

    def _switch(self, node: TSNode, loc: Location) -> List[Stmt]:
        subject, pre = self._condition(node.child_by_field_name("condition"))
        cases = []
        body = node.child_by_field_name("body")
        if body is not None:
            for child in body.named_children:
                if child.type != "case_statement":
                    continue
                value_node = child.child_by_field_name("value")
                value = self._expression(value_node) if value_node is not None else None
                self._flush([])
                stmts = []
                for stmt in child.named_children:
                    if value_node is not None and stmt.id == value_node.id:
                        continue
                    stmts.extend(self._statement(stmt))
                cases.append(SwitchCase(value, stmts))
        return pre + [Switch(loc, subject if subject is not None else ExpConst(0), cases)]

    def _declaration(self, node: TSNode) -> List[Stmt]:
        type_node = node.child_by_field_name("type")
        if type_node is None:
            return []
        base = self._type_text(type_node)
        stmts: List[Stmt] = []
        for declarator in node.children_by_field_name("declarator"):
            value = declarator.child_by_field_name("value") if declarator.type == "init_declarator" else None
            unwrapped = self._unwrap(base, declarator)
            if unwrapped is None:
                continue
            name, kind, type_name, dims = unwrapped
            loc = self._location(declarator)
            init = None
            if value is not None and value.type == "initializer_list":
                if kind == DeclKind.ARRAY and dims and dims[0] is None:
                    dims[0] = ExpConst(len(value.named_children))
            elif value is not None:
                init = self._expression(value)
                if kind == DeclKind.ARRAY and dims and dims[0] is None:
                    if isinstance(init, ExpConst) and init.is_string:
                        dims[0] = ExpConst(literal_byte_length(init.value) + 1)
            self._scope.names.add(name)
            stmts.append(Declare(loc, Declaration(name, kind, type_name, dims, loc=loc), init))
        return stmts

    def _effect(self, node: TSNode, loc: Location) -> List[Stmt]:
        """Lower an expression evaluated for its side effects"""
        kind = node.type
        if kind == "parenthesized_expression" and node.named_children:
            return self._effect(node.named_children[0], loc)
        if kind == "assignment_expression":
            return self._assignment(node, loc)
        if kind == "update_expression":
            return [self._increment(node, loc)]
        if kind == "comma_expression":
            left = node.child_by_field_name("left")
            right = node.child_by_field_name("right")
            return self._effect(left, loc) + self._effect(right, loc)
        if kind == "call_expression":
            func = self._call_name(node)
            args = [self._expression(a) for a in self._call_args(node)]
            return [Call(loc, func, args)]
        return [Eval(loc, self._expression(node))]

    def _assignment(self, node: TSNode, loc: Location) -> List[Stmt]:
        """target = value, with compound operators expanded"""
        left = node.child_by_field_name("left")
        right = node.child_by_field_name("right")
        op_node = node.child_by_field_name("operator")
        op = self._text(op_node) if op_node is not None else "="
        target = self._expression(left)
        if right.type == "assignment_expression":
            inner = self._assignment(right, loc)
            value = inner[-1].target if isinstance(inner[-1], Assign) else inner[-1].ret
            self._scope.before.extend(inner)
        elif op == "=" and right.type == "call_expression":
            func = self._call_name(right)
            args = [self._expression(a) for a in self._call_args(right)]
            return [Call(loc, func, args, ret=target)]
        else:
            value = self._expression(right)
        if op != "=":
            value = ExpBinOp(op[:-1], target, value)
        return [Assign(loc, target, value)]

    def _increment(self, node: TSNode, loc: Location) -> Assign:
        arg = self._expression(node.child_by_field_name("argument"))
        op = "+" if "++" in self._text(node) else "-"
        return Assign(loc, arg, ExpBinOp(op, arg, ExpConst(1)))

    # =========================================================================
    # Expressions
    # =========================================================================

    def _expression(self, node: Optional[TSNode]) -> Exp:
        """Translate an expression"""
        if node is None:
            return ExpConst.null()
        kind = node.type

        if kind == "identifier":
            text = self._text(node)
            if text == "NULL":
                return ExpConst.null()
            return ExpVar(text)

        if kind == "number_literal":
            number = parse_number(self._text(node))
            return number if number is not None else ExpVar(self._text(node))

        if kind == "string_literal":
            return ExpConst(self._string_value(node))

        if kind == "concatenated_string":
            parts = [self._string_value(c) for c in node.named_children if c.type == "string_literal"]
            return ExpConst("".join(parts))

        if kind == "char_literal":
            text = self._text(node)
            body = text[text.index("'") + 1:-1] if "'" in text else text
            decoded = decode_c_string(body)
            return ExpConst(ord(decoded[0]) if decoded else 0)

        if kind == "true":
            return ExpConst(1)
        if kind == "false":
            return ExpConst(0)
        if kind == "null":
            return ExpConst.null()

        if kind == "binary_expression":
            op_node = node.child_by_field_name("operator")
            return ExpBinOp(
                self._text(op_node) if op_node is not None else "+",
                self._expression(node.child_by_field_name("left")),
                self._expression(node.child_by_field_name("right")),
            )

        if kind in ("unary_expression", "pointer_expression"):
            op_node = node.child_by_field_name("operator")
            op = self._text(op_node) if op_node is not None else "-"
            return ExpUnOp(op, self._expression(node.child_by_field_name("argument")))

        if kind == "subscript_expression":
            return ExpIndex(
                self._expression(node.child_by_field_name("argument")),
                self._expression(node.child_by_field_name("index")),
            )

        if kind == "field_expression":
            op_node = node.child_by_field_name("operator")
            field_node = node.child_by_field_name("field")
            return ExpFieldAccess(
                self._expression(node.child_by_field_name("argument")),
                self._text(field_node),
                op_node is not None and self._text(op_node) == "->",
            )

        if kind == "call_expression":
            args = [self._expression(a) for a in self._call_args(node)]
            return ExpCall(self._call_name(node), args)

        if kind == "parenthesized_expression":
            inner = node.named_children[0] if node.named_children else None
            return self._expression(inner)

        if kind == "conditional_expression":
            return ExpTernary(
                self._expression(node.child_by_field_name("condition")),
                self._expression(node.child_by_field_name("consequence")),
                self._expression(node.child_by_field_name("alternative")),
            )

        if kind == "cast_expression":
            type_node = node.child_by_field_name("type")
            return ExpCast(
                self._expression(node.child_by_field_name("value")),
                self._type_text(type_node) if type_node is not None else "",
            )

        if kind == "sizeof_expression":
            type_node = node.child_by_field_name("type")
            if type_node is not None:
                text = self._type_text(type_node)
                if text in self._scope.names:
                    return ExpSizeof(operand=ExpVar(text))
                return ExpSizeof(type_name=text)
            return ExpSizeof(operand=self._expression(node.child_by_field_name("value")))

        if kind == "assignment_expression":
            stmts = self._assignment(node, self._location(node))
            self._scope.before.extend(stmts)
            last = stmts[-1]
            return last.target if isinstance(last, Assign) else last.ret

        if kind == "update_expression":
            stmt = self._increment(node, self._location(node))
            prefix = self._text(node).lstrip().startswith(("++", "--"))
            (self._scope.before if prefix else self._scope.after).append(stmt)
            return stmt.target

        if kind == "comma_expression":
            left = node.child_by_field_name("left")
            self._scope.before.extend(self._effect(left, self._location(left)))
            return self._expression(node.child_by_field_name("right"))

        # Default: keep the text as an opaque name
        return ExpVar(" ".join(self._text(node).split()))

    # =========================================================================
    # Helpers
    # =========================================================================

    def _string_value(self, node: TSNode) -> str:
        text = self._text(node)
        start = text.find('"')
        end = text.rfind('"')
        if start < 0 or end <= start:
            return ""
        return decode_c_string(text[start + 1:end])

    def _text(self, node: Optional[TSNode]) -> str:
        if node is None:
            return ""
        return self._source[node.start_byte:node.end_byte].decode("utf8", errors="replace")

    def _location(self, node: TSNode) -> Location:
        return Location(
            file=self._filename,
            line=node.start_point[0] + 1,
            column=node.start_point[1] + 1,
            end_line=node.end_point[0] + 1,
            end_column=node.end_point[1] + 1,
        )

    def _call_name(self, node: TSNode) -> str:
        func = node.child_by_field_name("function")
        return " ".join(self._text(func).split()) if func is not None else ""

    def _call_args(self, node: TSNode) -> List[TSNode]:
        args_node = node.child_by_field_name("arguments")
        if args_node is None:
            return []
        return [c for c in args_node.named_children if c.type != "comment"]
