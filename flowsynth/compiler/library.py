"""
Built-in block library - the default palette.
Each block is a BlockDefinition whose template renders a RenderContext into
brace-syntax source text. Output ports other than `out` are body slots: the
statements wired into them are synthesized and handed to the template through
`ctx.outputs`.
"""

import json
from typing import Any, Dict, List, Optional

from flowsynth.compiler.graph import (
    BlockDefinition, OptionKind, OptionSpec, RenderContext, Template,
)

CATEGORY_NAMES: Dict[str, str] = {
    "basics": "Basics",
    "inputs": "Inputs",
    "logic": "Logic",
    "math": "Math",
    "variables": "Variables",
    "control": "Control Flow",
    "functions": "Functions",
    "utilities": "Utilities",
}


def _opt(name: str, default: Any = "", kind: OptionKind = OptionKind.TEXT,
         choices: Optional[List[str]] = None) -> OptionSpec:
    if choices and kind == OptionKind.TEXT:
        kind = OptionKind.SELECT
    return OptionSpec(name=name, kind=kind, default=default, choices=choices or [])


def _block(name: str, template: Template, inputs: Optional[List[str]] = None,
           outputs: Optional[List[str]] = None, options: Optional[List[OptionSpec]] = None,
           description: str = "", is_root: bool = False) -> BlockDefinition:
    return BlockDefinition(
        name=name,
        description=description,
        inputs=["in"] if inputs is None else inputs,
        outputs=["out"] if outputs is None else outputs,
        options=options or [],
        template=template,
        is_root=is_root,
    )


def safe_message(value: str, default: str = "''") -> str:
    """Quote a bare word unless it already looks like a literal or an expression."""
    if not value:
        return default
    text = value.strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in "\"'`":
        return text
    if text.startswith(("if ", "if(", "for ", "for(", "while ", "while(")):
        return default
    if text.replace("_", "").replace("$", "").isalnum():
        return text
    if any(op in text for op in ("+", "-", "*", "/", "==", "(")):
        return text
    return f'"{text}"'


def _braced(ctx: RenderContext, head: str, body: str, tail: str = "}") -> str:
    return f"{head} {{\n{ctx.indent}{ctx.indented(body)}\n{tail}"


# ── Basics ────────────────────────────────────────────────────────────────────

def _program(ctx: RenderContext) -> str:
    return f"// Program: {ctx.option('name', 'main')}"


def _statement(ctx: RenderContext) -> str:
    return f"{ctx.input('expression')};"


def _comment(ctx: RenderContext) -> str:
    lines = str(ctx.option("text")).split("\n")
    if len(lines) > 1:
        return "/*\n * " + "\n * ".join(lines) + "\n */"
    return f"// {lines[0]}"


def _bridge(ctx: RenderContext) -> str:
    return ctx.output("body", "// Bridge content")


def _class(ctx: RenderContext) -> str:
    name = ctx.option("name", "MyClass")
    extends = ctx.option("extends")
    head = f"class {name} extends {extends}" if extends else f"class {name}"
    return _braced(ctx, head, ctx.output("body"))


def _param_names(params: Any) -> str:
    if not isinstance(params, list):
        return str(params or "")
    names = []
    for p in params:
        names.append(p.get("name", "") if isinstance(p, dict) else str(p))
    return ", ".join(n for n in names if n)


def _function(ctx: RenderContext) -> str:
    name = ctx.option("name", "myFunction")
    params = _param_names(ctx.option("parameters", []))
    return _braced(ctx, f"function {name}({params})", ctx.output("body", "// Function body"))


# ── Inputs ────────────────────────────────────────────────────────────────────

def _string(ctx: RenderContext) -> str:
    value = ctx.option("value")
    quote = ctx.option("type", "double-quote")
    if quote == "single-quote":
        return f"'{value}'"
    if quote == "backtick":
        return f"`{value}`"
    return f'"{value}"'


def _object(ctx: RenderContext) -> str:
    raw = ctx.option("json", "{}")
    try:
        json.loads(raw)
    except (TypeError, ValueError):
        return "{}"
    return raw


def _multiline_text(ctx: RenderContext) -> str:
    text = str(ctx.option("text"))
    quote = ctx.option("type", "backtick")
    if quote == "single-quote":
        return "'" + "\\n' + \n'".join(text.split("\n")) + "'"
    if quote == "double-quote":
        return '"' + '\\n" + \n"'.join(text.split("\n")) + '"'
    return f"`{text}`"


def _template_string(ctx: RenderContext) -> str:
    processed = str(ctx.option("template"))
    for var in ("var1", "var2", "var3"):
        if ctx.input(var):
            processed = processed.replace("${" + var + "}", "${" + ctx.input(var) + "}")
    return f"`{processed}`"


# ── Logic ─────────────────────────────────────────────────────────────────────

def _if(ctx: RenderContext) -> str:
    code = _braced(ctx, f"if ({ctx.input('condition', 'true')})", ctx.output("true"))
    false_branch = ctx.output("false")
    if false_branch.strip():
        code += " " + _braced(ctx, "else", false_branch)
    return code


def _ternary(ctx: RenderContext) -> str:
    return (
        f"({ctx.input('condition', 'true')} ? {ctx.input('trueValue', repr('true'))}"
        f" : {ctx.input('falseValue', repr('false'))})"
    )


def _binary(left_default: str, right_default: str, operator_default: str) -> Template:
    def render(ctx: RenderContext) -> str:
        left = ctx.input("leftOperand", left_default)
        right = ctx.input("rightOperand", right_default)
        return f"({left} {ctx.option('operator', operator_default)} {right})"
    return render


# ── Control ───────────────────────────────────────────────────────────────────

def _for_loop(ctx: RenderContext) -> str:
    counter = ctx.option("counter", "i")
    iterations = ctx.input("iterations", "10")
    head = f"for (let {counter} = 0; {counter} < {iterations}; {counter}++)"
    return _braced(ctx, head, ctx.output("body", "// Loop body"))


def _while(ctx: RenderContext) -> str:
    return _braced(ctx, f"while ({ctx.input('condition', 'true')})", ctx.output("body", "// Loop body"))


def _do_while(ctx: RenderContext) -> str:
    body = ctx.output("body", "// Loop body")
    return _braced(ctx, "do", body, tail=f"}} while ({ctx.input('condition', 'true')});")


def _for_of(ctx: RenderContext) -> str:
    item = ctx.option("item", "item")
    head = f"for (const {item} of {ctx.input('iterable', '[]')})"
    return _braced(ctx, head, ctx.output("body", "// Loop body"))


def _try(ctx: RenderContext) -> str:
    error_var = ctx.option("errorVar", "error")
    code = _braced(ctx, "try", ctx.output("body", "// Try block"))
    code += " " + _braced(ctx, f"catch ({error_var})", ctx.output("catchBlock", "// Catch block"))
    finally_block = ctx.output("finallyBlock")
    if finally_block:
        code += " " + _braced(ctx, "finally", finally_block)
    return code


# ── Functions ─────────────────────────────────────────────────────────────────

def _arrow(ctx: RenderContext) -> str:
    params = ctx.option("params")
    body = ctx.output("body", "// Function body")
    if ctx.option("concise", "false") == "true":
        return f"({params}) => {body}"
    return _braced(ctx, f"({params}) =>", body)


# ── Utilities ─────────────────────────────────────────────────────────────────

def _console(method: str) -> Template:
    def render(ctx: RenderContext) -> str:
        message = safe_message(ctx.input("message"))
        label = ctx.option("label")
        if label:
            return f'console.{method}("{label}: ", {message});'
        return f"console.{method}({message});"
    return render


BUILTIN_BLOCKS: Dict[str, Dict[str, BlockDefinition]] = {
    "basics": {
        "program": _block(
            "Program", _program, inputs=[], options=[_opt("name", "main")],
            description="Entry point of a program; statements follow through `out`.",
            is_root=True,
        ),
        "statement": _block("Statement", _statement, inputs=["in", "expression"]),
        "commentBlock": _block(
            "Comment Block", _comment,
            options=[_opt("text", "This is a comment", OptionKind.MULTILINE)],
        ),
        "bridge": _block("Bridge", _bridge, outputs=["out", "body"]),
        "class": _block(
            "Class", _class, outputs=["out", "body"],
            options=[_opt("name", "MyClass"), _opt("extends", "")],
        ),
        "function": _block(
            "Function", _function, outputs=["out", "body"],
            options=[
                _opt("name", "myFunction"),
                _opt("parameters", [{"name": "param1", "value": ""}], OptionKind.PROPERTY_LIST),
            ],
        ),
    },
    "inputs": {
        "number": _block(
            "Number", lambda ctx: str(ctx.option("value", "0")),
            outputs=["out", "value"], options=[_opt("value", "0", OptionKind.NUMBER)],
        ),
        "text": _block(
            "Text", lambda ctx: f'"{ctx.option("value")}"',
            outputs=["out", "value"], options=[_opt("value", "text")],
        ),
        "string": _block(
            "String", _string, outputs=["out", "value"],
            options=[_opt("value", ""), _opt("type", "double-quote", choices=["double-quote", "single-quote", "backtick"])],
        ),
        "boolean": _block(
            "Boolean", lambda ctx: str(ctx.option("value", "true")),
            outputs=["out", "value"], options=[_opt("value", "true", choices=["true", "false"])],
        ),
        "array": _block(
            "Array", lambda ctx: f"[{ctx.option('items')}]",
            outputs=["out", "value"], options=[_opt("items", "1,2,3")],
        ),
        "object": _block(
            "Object", _object, outputs=["out", "value"], options=[_opt("json", '{"key": "value"}')],
        ),
        "null": _block("Null", lambda ctx: "null", outputs=["out", "value"]),
        "multilineText": _block(
            "Multiline Text", _multiline_text, inputs=[], outputs=["value"],
            options=[
                _opt("text", "Line 1\nLine 2", OptionKind.MULTILINE),
                _opt("type", "backtick", choices=["backtick", "double-quote", "single-quote"]),
            ],
        ),
        "templateString": _block(
            "Template String", _template_string, inputs=["var1", "var2", "var3"], outputs=["value"],
            options=[_opt("template", "Hello, ${var1}!", OptionKind.MULTILINE)],
        ),
    },
    "logic": {
        "if": _block("If Condition", _if, inputs=["in", "condition"], outputs=["out", "true", "false"]),
        "ternary": _block(
            "Ternary Operator", _ternary,
            inputs=["in", "condition", "trueValue", "falseValue"], outputs=["out", "result"],
        ),
        "comparison": _block(
            "Comparison", _binary("0", "0", "==="),
            inputs=["in", "leftOperand", "rightOperand"], outputs=["out", "result"],
            options=[_opt("operator", "===", choices=["===", "!==", "==", "!=", ">", "<", ">=", "<="])],
        ),
        "and": _block(
            "AND", lambda ctx: f"({ctx.input('value1', 'true')} && {ctx.input('value2', 'true')})",
            inputs=["in", "value1", "value2"], outputs=["out", "result"],
        ),
        "or": _block(
            "OR", lambda ctx: f"({ctx.input('value1', 'false')} || {ctx.input('value2', 'false')})",
            inputs=["in", "value1", "value2"], outputs=["out", "result"],
        ),
        "not": _block(
            "NOT", lambda ctx: f"!({ctx.input('value', 'true')})",
            inputs=["in", "value"], outputs=["out", "result"],
        ),
    },
    "math": {
        "arithmetic": _block(
            "Arithmetic", _binary("0", "0", "+"),
            inputs=["in", "leftOperand", "rightOperand"], outputs=["out", "result"],
            options=[_opt("operator", "+", choices=["+", "-", "*", "/", "%"])],
        ),
        "random": _block(
            "Random Number",
            lambda ctx: (
                f"Math.floor(Math.random() * ({ctx.input('max', '100')} - {ctx.input('min', '0')} + 1)"
                f" + {ctx.input('min', '0')})"
            ),
            inputs=["in", "min", "max"], outputs=["out", "result"],
        ),
        "round": _block(
            "Round Number", lambda ctx: f"Math.{ctx.option('mode', 'round')}({ctx.input('value', '0')})",
            inputs=["in", "value"], outputs=["out", "result"],
            options=[_opt("mode", "round", choices=["round", "floor", "ceil"])],
        ),
        "mathFunction": _block(
            "Math Function", lambda ctx: f"Math.{ctx.option('function', 'abs')}({ctx.input('value', '0')})",
            inputs=["in", "value"], outputs=["out", "result"],
            options=[_opt("function", "abs", choices=["abs", "sqrt", "sin", "cos", "tan", "log"])],
        ),
    },
    "variables": {
        "declare": _block(
            "Declare Variable",
            lambda ctx: f"{ctx.option('type', 'let')} {ctx.option('name', 'myVar')} = {ctx.input('value', 'undefined')};",
            inputs=["in", "value"],
            options=[_opt("name", "myVar"), _opt("type", "let", choices=["let", "const", "var"])],
        ),
        "get": _block(
            "Get Variable", lambda ctx: str(ctx.option("name", "myVar")),
            outputs=["out", "value"], options=[_opt("name", "myVar")],
        ),
        "set": _block(
            "Set Variable",
            lambda ctx: f"{ctx.option('name', 'myVar')} = {ctx.input('value', 'undefined')};",
            inputs=["in", "value"], options=[_opt("name", "myVar")],
        ),
        "increment": _block(
            "Increment Variable",
            lambda ctx: (
                f"{ctx.option('type', '++')}{ctx.option('name', 'myVar')}"
                if ctx.option("position", "postfix") == "prefix"
                else f"{ctx.option('name', 'myVar')}{ctx.option('type', '++')}"
            ),
            outputs=["out", "value"],
            options=[
                _opt("name", "myVar"),
                _opt("type", "++", choices=["++", "--"]),
                _opt("position", "postfix", choices=["prefix", "postfix"]),
            ],
        ),
    },
    "control": {
        "loop": _block(
            "For Loop", _for_loop, inputs=["in", "iterations"], outputs=["out", "body"],
            options=[_opt("counter", "i")],
        ),
        "while": _block("While Loop", _while, inputs=["in", "condition"], outputs=["out", "body"]),
        "doWhile": _block("Do-While Loop", _do_while, inputs=["in", "condition"], outputs=["out", "body"]),
        "forOf": _block(
            "For-Of Loop", _for_of, inputs=["in", "iterable"], outputs=["out", "body"],
            options=[_opt("item", "item")],
        ),
        "break": _block("Break", lambda ctx: "break;", outputs=[]),
        "continue": _block("Continue", lambda ctx: "continue;", outputs=[]),
        "try": _block(
            "Try-Catch", _try, outputs=["out", "body", "catchBlock", "finallyBlock"],
            options=[_opt("errorVar", "error")],
        ),
        "throw": _block(
            "Throw Exception",
            lambda ctx: f"throw {ctx.input('error', 'new Error(' + repr('Exception occurred') + ')')};",
            inputs=["in", "error"], outputs=[],
        ),
    },
    "functions": {
        "call": _block(
            "Call Function", lambda ctx: f"{ctx.option('name', 'myFunction')}({ctx.input('params')})",
            inputs=["in", "params"], outputs=["out", "result"], options=[_opt("name", "myFunction")],
        ),
        "return": _block(
            "Return Statement", lambda ctx: f"return {ctx.input('value', 'null')};",
            inputs=["in", "value"], outputs=[],
        ),
        "arrow": _block(
            "Arrow Function", _arrow, outputs=["out", "body"],
            options=[_opt("params", ""), _opt("concise", "false", choices=["false", "true"])],
        ),
    },
    "utilities": {
        "consoleLog": _block(
            "Console Log", _console("log"), inputs=["in", "message"], options=[_opt("label", "")],
        ),
        "consoleError": _block(
            "Console Error", _console("error"), inputs=["in", "message"], options=[_opt("label", "")],
        ),
        "consoleWarn": _block(
            "Console Warning", _console("warn"), inputs=["in", "message"], options=[_opt("label", "")],
        ),
    },
}


def register_builtin_blocks(registry) -> None:
    """Register the built-in palette on a DefinitionRegistry."""
    for category, blocks in BUILTIN_BLOCKS.items():
        registry.set_category_name(category, CATEGORY_NAMES.get(category, category))
        for node_type, definition in blocks.items():
            registry.register(category, node_type, definition.model_copy())
