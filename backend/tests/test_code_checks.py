"""Local syntax checks for generated compositions."""

from promopipe.pipeline.code_checks import auto_fix, extract_code, find_syntax_issues


def test_clean_code_has_no_issues():
    code = """
import { AbsoluteFill } from 'remotion';
export const GeneratedVideo = () => {
  const title = `Notely ${'v2'}`;
  return <AbsoluteFill>{title}</AbsoluteFill>; // "quoted" in a comment
};
"""
    assert find_syntax_issues(code) == []


def test_unbalanced_braces_reported():
    issues = find_syntax_issues("export const A = () => { return (<div />);")
    assert issues == ["Unbalanced curly braces: 1 extra {"]


def test_brackets_inside_strings_ignored():
    assert find_syntax_issues("const s = '{[(';") == []


def test_unterminated_template_reported():
    issues = find_syntax_issues("const s = `hello;\nexport default s;")
    assert "Unclosed template string" in issues


def test_empty_code_is_an_issue():
    assert find_syntax_issues("   ") == ["Code is empty"]


def test_extract_code_from_fence():
    text = "Here you go:\n```tsx\nexport const A = 1;\n```\nEnjoy"
    assert extract_code(text) == "export const A = 1;"


def test_auto_fix_strips_fence_and_closes_template():
    code, fixes = auto_fix("```tsx\nconst s = `Notely;\nexport default s;\n```")

    assert code == "const s = `Notely;`\nexport default s;"
    assert fixes == [
        "Removed markdown code fence",
        "Closed unterminated template literal on line 1",
    ]
    assert find_syntax_issues(code) == []


def test_auto_fix_leaves_clean_code_alone():
    code = "export const A = () => null;"
    assert auto_fix(code) == (code, [])


def test_apostrophes_in_jsx_text_are_not_strings():
    code = """
export const GeneratedVideo = () => {
  return <AbsoluteFill><h1>It's fast</h1><p>Don't wait</p></AbsoluteFill>;
};
"""
    assert find_syntax_issues(code) == []


def test_slashes_in_jsx_text_are_not_comments():
    code = """
export const GeneratedVideo = () => (
  <div>
    Visit https://notely.app // today
  </div>
);
"""
    assert find_syntax_issues(code) == []


def test_jsx_attributes_and_nested_expressions_are_scanned():
    code = """
export const List = ({ items }) => (
  <ul className='list'>
    {items.map((item) => { return <li key={item.id}>{item.name}'s card</li>; })}
  </ul>
);
"""
    assert find_syntax_issues(code) == []


def test_comparison_and_generics_are_not_jsx():
    code = "const ok = a < b && useState<string>('x')[0] !== '';\nif (n<3) { run(); }"
    assert find_syntax_issues(code) == []


def test_unbalanced_brace_inside_jsx_expression_reported():
    code = "export const A = () => <div>{items.map((i) => { return i; })</div>;"
    assert "Unbalanced curly braces: 1 extra {" in find_syntax_issues(code)
