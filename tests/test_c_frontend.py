"""
Tests for the C frontend.
"""

import pytest

from cguard.errors import ParseInputError
from cguard.frontend.c_frontend import decode_c_string, parse_number
from cguard.ir import (
    Assign, Break, Call, Continue, DeclKind, Declare, ExpBinOp, ExpCast, ExpConst, ExpIndex,
    ExpSizeof, ExpVar, If, Loop, LoopKind, Return, Switch,
)

try:
    import tree_sitter_c
    from cguard.frontend import CFrontend
    C_AVAILABLE = True
except ImportError:
    C_AVAILABLE = False


needs_c = pytest.mark.skipif(not C_AVAILABLE, reason="tree-sitter-c not installed")


def translate(source: str, filename: str = "test.c"):
    return CFrontend().translate(source, filename)


def only_function(source: str):
    tu = translate(source)
    assert len(tu.functions) == 1
    return tu.functions[0]


class TestStringDecoding:
    """Escape handling for string and char literals"""

    def test_simple_escapes(self):
        assert decode_c_string(r"a\tb\n") == "a\tb\n"

    def test_hex_and_octal(self):
        assert decode_c_string(r"\x41\102") == "AB"
        assert decode_c_string(r"\0") == "\0"

    def test_quotes(self):
        assert decode_c_string(r"say \"hi\"") == 'say "hi"'

    def test_trailing_backslash_kept(self):
        assert decode_c_string("a\\") == "a\\"


class TestNumbers:
    """Integer and floating literals"""

    def test_decimal_with_suffix(self):
        assert parse_number("10UL").value == 10

    def test_hex(self):
        assert parse_number("0x1F").value == 31

    def test_octal(self):
        assert parse_number("010").value == 8

    def test_float(self):
        assert parse_number("1.5f").value == 1.5

    def test_not_a_number(self):
        assert parse_number("abc") is None


@needs_c
class TestDeclarations:
    """Types, macros and declarations"""

    SOURCE = """
#define BUF_SIZE 64
#define HALF (BUF_SIZE / 2)
enum { RED, GREEN = 5, BLUE };
struct User { char name[30]; int id; };
typedef struct { char tag[8]; } Tag;

int main(int argc, char *argv[]) {
    char buf[BUF_SIZE];
    char *p = NULL;
    int i = 0;
    struct User user;
    char msg[] = "hello";
    i++;
    return 0;
}
"""

    def test_macros_and_enums(self):
        tu = translate(self.SOURCE)
        assert tu.constants["BUF_SIZE"] == 64
        assert tu.constants["HALF"] == 32
        assert (tu.constants["RED"], tu.constants["GREEN"], tu.constants["BLUE"]) == (0, 5, 6)

    def test_struct_layouts(self):
        tu = translate(self.SOURCE)
        assert [f.name for f in tu.structs["User"].fields] == ["name", "id"]
        assert [f.name for f in tu.structs["Tag"].fields] == ["tag"]

    def test_parameters(self):
        fn = translate(self.SOURCE).get_function("main")
        argc, argv = fn.params
        assert argc.kind == DeclKind.SCALAR
        assert argv.kind == DeclKind.POINTER
        assert argv.base_type == "char **"
        assert argv.is_param

    def test_locals(self):
        fn = translate(self.SOURCE).get_function("main")
        decls = {s.decl.name: s for s in fn.body if isinstance(s, Declare)}
        assert decls["buf"].decl.kind == DeclKind.ARRAY
        assert decls["buf"].decl.dims == [ExpVar("BUF_SIZE")]
        assert decls["p"].decl.kind == DeclKind.POINTER
        assert decls["p"].init == ExpConst.null()
        assert decls["i"].decl.kind == DeclKind.SCALAR
        assert decls["user"].decl.kind == DeclKind.STRUCT

    def test_unsized_array_takes_literal_length(self):
        fn = translate(self.SOURCE).get_function("main")
        msg = next(s for s in fn.body if isinstance(s, Declare) and s.decl.name == "msg")
        assert msg.decl.dims == [ExpConst(6)]

    def test_increment_lowered(self):
        fn = translate(self.SOURCE).get_function("main")
        inc = [s for s in fn.body if isinstance(s, Assign)]
        assert inc == [Assign(inc[0].loc, ExpVar("i"), ExpBinOp("+", ExpVar("i"), ExpConst(1)))]

    def test_locations(self):
        fn = translate(self.SOURCE, "demo.c").get_function("main")
        assert fn.loc.file == "demo.c"
        assert fn.loc.line == 8
        assert fn.end_loc.line == 16
        assert isinstance(fn.body[-1], Return)
        assert fn.body[-1].loc.line == 15

    def test_unit_carries_file_scope_facts(self):
        fn = translate(self.SOURCE).get_function("main")
        assert fn.constants["BUF_SIZE"] == 64
        assert "User" in fn.structs

    def test_local_typedef(self):
        fn = only_function("""
void f(void) {
    typedef struct { int score; } Entry;
    Entry board[4];
}
""")
        assert "Entry" in fn.structs
        board = next(s for s in fn.body if isinstance(s, Declare))
        assert board.decl.base_type == "Entry"


@needs_c
class TestStatements:
    """Statement and expression lowering"""

    def test_control_flow(self):
        fn = only_function("""
void flow(int n) {
    int i;
    for (i = 0; i < n; i++) {
        if (i == 2) continue; else break;
    }
    while (n > 0) n--;
    do { n++; } while (n < 3);
    switch (n) { case 1: n = 2; break; default: break; }
}
""")
        _, for_loop, while_loop, do_loop, switch = fn.body
        assert isinstance(for_loop, Loop) and for_loop.kind == LoopKind.FOR
        assert for_loop.condition == ExpBinOp("<", ExpVar("i"), ExpVar("n"))
        assert len(for_loop.init) == 1 and len(for_loop.update) == 1
        branch = for_loop.body[0]
        assert isinstance(branch, If)
        assert isinstance(branch.then_body[0], Continue)
        assert isinstance(branch.else_body[0], Break)
        assert while_loop.kind == LoopKind.WHILE
        assert do_loop.kind == LoopKind.DO_WHILE
        assert isinstance(switch, Switch)
        assert [c.value for c in switch.cases] == [ExpConst(1), None]
        assert isinstance(switch.cases[0].body[-1], Break)

    def test_call_result_assignment(self):
        fn = only_function("""
#include <stdlib.h>
void f(void) {
    char *p;
    p = malloc(10);
    p = (char *)malloc(20);
}
""")
        first, second = fn.body[1], fn.body[2]
        assert isinstance(first, Call)
        assert first.func == "malloc" and first.ret == ExpVar("p")
        assert isinstance(second, Assign)
        assert isinstance(second.value, ExpCast)

    def test_postfix_applied_after_statement(self):
        fn = only_function("""
void f(void) {
    char buf[4];
    int i = 0;
    buf[i++] = 'a';
}
""")
        store, bump = fn.body[2], fn.body[3]
        assert store.target == ExpIndex(ExpVar("buf"), ExpVar("i"))
        assert store.value == ExpConst(ord("a"))
        assert bump.target == ExpVar("i")

    def test_sizeof_variable_and_type(self):
        fn = only_function("""
void f(void) {
    char buf[16];
    int a = sizeof(buf);
    int b = sizeof(int);
}
""")
        a, b = fn.body[1].init, fn.body[2].init
        assert a == ExpSizeof(operand=ExpVar("buf"))
        assert b == ExpSizeof(type_name="int")

    def test_concatenated_string(self):
        fn = only_function("""
void f(char *dst) {
    strcpy(dst, "ab" "cd");
}
""")
        assert fn.body[0].args[1] == ExpConst("abcd")

    def test_compound_assignment(self):
        fn = only_function("void f(int n) { n += 3; }")
        assert fn.body[0].value == ExpBinOp("+", ExpVar("n"), ExpConst(3))

    def test_syntax_error_rejected(self):
        tu = translate("void broken(void) { int x = ; }\nvoid fine(void) { }\n")
        broken = tu.get_function("broken")
        assert broken is None or broken.syntax_errors
        if broken is not None:
            with pytest.raises(ParseInputError):
                broken.validate()
        tu.get_function("fine").validate()

    def test_translate_file(self, tmp_path):
        path = tmp_path / "one.c"
        path.write_text("int one(void) { return 1; }\n")
        tu = CFrontend().translate_file(str(path))
        assert tu.filename == str(path)
        assert tu.functions[0].name == "one"
