"""Local syntax checks and light auto-fixes for generated TSX.

This is not a parser. It catches the failure modes LLM-generated
compositions actually hit (unbalanced brackets, unterminated string or
template literals, code wrapped in markdown fences) cheaply, before an
edited composition is accepted. The render service compiler stays the
authority on whether a composition builds.
"""

import re

_OPENERS = {"{": "}", "[": "]", "(": ")"}
_CLOSERS = {v: k for k, v in _OPENERS.items()}
_BRACKET_NAMES = {
    "{": "curly braces",
    "[": "square brackets",
    "(": "parentheses",
}

_FENCE_RE = re.compile(r"```(?:tsx?|jsx?|typescript|javascript)?[ \t]*\n?(.*?)```", re.DOTALL)

# Characters after which a `<` starts JSX rather than a comparison or generic
_JSX_PRECEDERS = "([{,=?:&|!;>"


def extract_code(text: str) -> str:
    """Return the first fenced code block in ``text``, or ``text`` stripped."""
    match = _FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def _jsx_may_start(code: str, i: int) -> bool:
    """Whether the ``<`` at ``i`` can open a JSX element rather than compare or parametrize."""
    if i + 1 >= len(code) or not (code[i + 1].isalpha() or code[i + 1] == ">"):
        return False
    j = i - 1
    while j >= 0 and code[j].isspace():
        j -= 1
    if j < 0 or code[j] in _JSX_PRECEDERS:
        return True
    k = j
    while k >= 0 and (code[k].isalnum() or code[k] in "_$"):
        k -= 1
    return code[k + 1:j + 1] in ("return", "yield")


def _scan(code: str) -> tuple[dict[str, int], list[str]]:
    """Count bracket depth outside literals and report unterminated literals.

    Template literal ``${...}`` interpolations and JSX ``{...}`` expressions
    are scanned as code. JSX text between tags is skipped, so apostrophes and
    ``//`` in visible copy are not mistaken for strings or comments.
    """
    depth = {k: 0 for k in _OPENERS}
    issues: list[str] = []

    # Stack of contexts. "tag", "ctag" (closing tag) and "text" are JSX states;
    # "{jsx" and "${" are expressions nested in JSX or a template literal
    stack = ["code"]
    line = 1
    string_start_line = 0
    i = 0
    n = len(code)

    while i < n:
        ch = code[i]
        ctx = stack[-1]

        if ch == "\n":
            line += 1
            if ctx in ("'", '"'):
                issues.append(f"Unterminated string literal starting on line {string_start_line}")
                stack.pop()
            i += 1
            continue

        if ctx in ("'", '"'):
            if ch == "\\":
                i += 2
                continue
            if ch == ctx:
                stack.pop()
            i += 1
            continue

        if ctx == "`":
            if ch == "\\":
                i += 2
                continue
            if ch == "`":
                stack.pop()
            elif ch == "$" and i + 1 < n and code[i + 1] == "{":
                stack.append("${")
                i += 2
                continue
            i += 1
            continue

        if ctx == "text":
            if ch == "{":
                stack.append("{jsx")
                depth["{"] += 1
            elif ch == "<" and i + 1 < n and code[i + 1] == "/":
                stack.append("ctag")
            elif ch == "<" and i + 1 < n and (code[i + 1].isalpha() or code[i + 1] == ">"):
                stack.append("tag")
            i += 1
            continue

        if ctx == "ctag":
            if ch == ">":
                stack.pop()
                if stack[-1] == "text":
                    stack.pop()
            i += 1
            continue

        if ctx == "tag":
            if ch in ("'", '"'):
                stack.append(ch)
                string_start_line = line
            elif ch == "{":
                stack.append("{jsx")
                depth["{"] += 1
            elif ch == "/" and i + 1 < n and code[i + 1] == ">":
                stack.pop()
                i += 2
                continue
            elif ch == ">":
                stack[-1] = "text"
            i += 1
            continue

        # code-like contexts
        if ch == "/" and i + 1 < n and code[i + 1] == "/":
            end = code.find("\n", i)
            i = n if end == -1 else end
            continue
        if ch == "/" and i + 1 < n and code[i + 1] == "*":
            end = code.find("*/", i + 2)
            if end == -1:
                issues.append("Unterminated block comment")
                break
            line += code.count("\n", i, end)
            i = end + 2
            continue
        if ch in ("'", '"', "`"):
            stack.append(ch)
            string_start_line = line
        elif ch == "<" and _jsx_may_start(code, i):
            stack.append("tag")
        elif ch == "{":
            stack.append("{")
            depth["{"] += 1
        elif ch == "}":
            if ctx in ("{", "{jsx", "${"):
                stack.pop()
            if ctx != "${":
                depth["{"] -= 1
        elif ch in _OPENERS:
            depth[ch] += 1
        elif ch in _CLOSERS:
            depth[_CLOSERS[ch]] -= 1
        i += 1

    for ctx in stack[1:]:
        if ctx == "`" or ctx == "${":
            issues.append("Unclosed template string")
            break
        if ctx in ("'", '"'):
            issues.append("Unterminated string literal at end of file")
            break
    return depth, issues


def find_syntax_issues(code: str) -> list[str]:
    """Return human-readable syntax problems; empty when the code looks sound."""
    if not code or not code.strip():
        return ["Code is empty"]

    depth, issues = _scan(code)
    for opener, count in depth.items():
        name = _BRACKET_NAMES[opener]
        if count > 0:
            issues.append(f"Unbalanced {name}: {count} extra {opener}")
        elif count < 0:
            issues.append(f"Unbalanced {name}: {-count} extra {_OPENERS[opener]}")
    return issues


def auto_fix(code: str) -> tuple[str, list[str]]:
    """Apply safe mechanical fixes. Returns the code and a list of fixes made.

    Currently strips markdown fences and closes a template literal left open
    at the end of a line (the most common truncation artifact).
    """
    fixes: list[str] = []
    fixed = code

    unfenced = extract_code(fixed) if "```" in fixed else fixed
    if unfenced != fixed:
        fixes.append("Removed markdown code fence")
        fixed = unfenced

    if "Unclosed template string" in _scan(fixed)[1]:
        lines = fixed.split("\n")
        for idx, text in enumerate(lines):
            if text.count("`") - text.count("\\`") * 1 == 1 and "${" not in text:
                candidate = "\n".join(lines[:idx] + [text + "`"] + lines[idx + 1:])
                if "Unclosed template string" not in _scan(candidate)[1]:
                    lines[idx] = text + "`"
                    fixed = candidate
                    fixes.append(f"Closed unterminated template literal on line {idx + 1}")
                    break

    return fixed, fixes
