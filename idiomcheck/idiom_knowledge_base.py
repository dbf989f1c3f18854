"""
C++ Idiom Knowledge Base

The catalogue behind every diagnostic: loop form, conditional
minimisation, pointer/member-access notation, constructor initialisation,
const-correctness, operator overloading and iterator conventions.  An
entry carries the rule's title, its category, why the idiom matters, a
before/after pair and how to apply the fix.

Checks take their description from this catalogue and the registry
refuses a check whose rule has no entry.  Cross references are treated as
symmetric: naming B from A makes A show up among B's related rules too.
"""

from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple, Union


class IdiomCategory(str, Enum):
    STRUCTURAL = "Structural"      # loops, expressions, branches
    DATAFLOW = "Dataflow"          # needs reads/writes or the CFG
    CLASS = "Class"                # class, operator and iterator idioms


@dataclass(frozen=True)
class IdiomRule:
    rule_id: str
    title: str
    category: IdiomCategory
    rationale: str
    non_compliant: str                     # code example
    compliant: str                         # fixed code example
    fix_strategy: str
    cross_references: Tuple[str, ...] = ()


# ═══════════════════════════════════════════════════════════════════════
#  Catalogue
# ═══════════════════════════════════════════════════════════════════════

_RULES: Dict[str, IdiomRule] = {}


def _define(rule_id: str, title: str, category: IdiomCategory, rationale: str,
            non_compliant: str, compliant: str, fix_strategy: str,
            cross_references: Sequence[str] = ()) -> None:
    if rule_id in _RULES:
        raise ValueError(f"Idiom rule '{rule_id}' defined twice")
    if rule_id in cross_references:
        raise ValueError(f"Idiom rule '{rule_id}' refers to itself")
    _RULES[rule_id] = IdiomRule(rule_id, title, category, rationale, non_compliant,
                                compliant, fix_strategy, tuple(cross_references))


# ───────────────────────────────────────────────────────────────────────
#  Structural: loops
# ───────────────────────────────────────────────────────────────────────

_define(
    rule_id="PreferPreIncrement",
    title="Prefer pre-increment when the value is discarded",
    category=IdiomCategory.STRUCTURAL,
    rationale=(
        "Post-increment has to produce the old value.  For iterators and "
        "other class types that means a copy nobody uses.  Pre-increment "
        "states the intent and is never slower."
    ),
    non_compliant="""\
for (std::size_t i = 0; i < n; i++) {
    total += v[i];
}""",
    compliant="""\
for (std::size_t i = 0; i < n; ++i) {
    total += v[i];
}""",
    fix_strategy=(
        "Replace `i++` / `i--` / `i += 1` / `i -= 1` with `++i` / `--i` "
        "wherever the result of the expression is not used."
    ),
    cross_references=["PreferForLoop"],
)

_define(
    rule_id="RedundantLoopCondition",
    title="Conditional redundant with loop condition",
    category=IdiomCategory.STRUCTURAL,
    rationale=(
        "Inside the body the loop condition is already known to hold.  "
        "Testing it again adds a branch that can never be false and "
        "suggests the author expected something else."
    ),
    non_compliant="""\
for (int i = 0; i < n; ++i) {
    if (i < n) {
        use(i);
    }
}""",
    compliant="""\
for (int i = 0; i < n; ++i) {
    use(i);
}""",
    fix_strategy=(
        "Remove the repeated test (or the repeated `&&` conjunct).  If the "
        "body changes a variable of the condition the test is not redundant "
        "and the rule does not fire."
    ),
    cross_references=["HoistableLoopCondition"],
)

_define(
    rule_id="PreferForLoop",
    title="Prefer a for loop for counter-controlled iteration",
    category=IdiomCategory.STRUCTURAL,
    rationale=(
        "A `while` loop whose counter is declared just before it and stepped "
        "inside it spreads the loop header over three places and leaks the "
        "counter into the enclosing scope."
    ),
    non_compliant="""\
int i = 0;
while (i < n) {
    process(i);
    ++i;
}""",
    compliant="""\
for (int i = 0; i < n; ++i) {
    process(i);
}""",
    fix_strategy=(
        "Move the declaration into the for-init clause and the step into the "
        "increment clause.  Only applies when the counter is not used after "
        "the loop."
    ),
    cross_references=["PreferPreIncrement"],
)

_define(
    rule_id="HoistableLoopCondition",
    title="Loop-invariant condition can be hoisted",
    category=IdiomCategory.STRUCTURAL,
    rationale=(
        "When a loop body is a single `if` whose condition cannot change "
        "during the loop, the test is evaluated on every iteration although "
        "its outcome was fixed before the loop started."
    ),
    non_compliant="""\
for (int i = 0; i < n; ++i) {
    if (verbose) {
        log(i);
    }
}""",
    compliant="""\
if (verbose) {
    for (int i = 0; i < n; ++i) {
        log(i);
    }
}""",
    fix_strategy=(
        "Test the condition once, outside the loop.  The condition must be "
        "free of side effects and none of its variables may be written in "
        "the loop."
    ),
    cross_references=["RedundantLoopCondition"],
)

# ───────────────────────────────────────────────────────────────────────
#  Structural: expressions
# ───────────────────────────────────────────────────────────────────────

_define(
    rule_id="MagicNumber",
    title="Magic number",
    category=IdiomCategory.STRUCTURAL,
    rationale=(
        "An unexplained literal in an expression hides its meaning and makes "
        "every later change a search-and-replace exercise.  A named constant "
        "documents intent and keeps related uses in step."
    ),
    non_compliant="""\
double area(double r) {
    return 3.14159 * r * r;
}""",
    compliant="""\
constexpr double kPi = 3.14159;

double area(double r) {
    return kPi * r * r;
}""",
    fix_strategy=(
        "Introduce a named `constexpr` constant (or enumerator) and use it.  "
        "Literals in declarations, array bounds, enumerators, default "
        "arguments and the configured allow-list are not reported."
    ),
)

_define(
    rule_id="PointerArithmeticIndexing",
    title="Prefer subscript over pointer arithmetic",
    category=IdiomCategory.STRUCTURAL,
    rationale=(
        "`*(p + n)` and `p[n]` mean the same thing, but the subscript form "
        "says \"element n\" directly and is what readers expect."
    ),
    non_compliant="""\
int third(const int* p) {
    return *(p + 2);
}""",
    compliant="""\
int third(const int* p) {
    return p[2];
}""",
    fix_strategy="Rewrite `*(p + n)` as `p[n]`.",
    cross_references=["PreferArrowOperator"],
)

_define(
    rule_id="PreferArrowOperator",
    title="Prefer -> over (*p).member",
    category=IdiomCategory.STRUCTURAL,
    rationale=(
        "`(*p).m` needs parentheses because of operator precedence and is "
        "harder to scan than the dedicated member-through-pointer operator."
    ),
    non_compliant="""\
int width(const Rect* r) {
    return (*r).w;
}""",
    compliant="""\
int width(const Rect* r) {
    return r->w;
}""",
    fix_strategy="Rewrite `(*p).m` as `p->m`.",
    cross_references=["PointerArithmeticIndexing"],
)

_define(
    rule_id="BoolLiteralComparison",
    title="Comparison with a boolean literal",
    category=IdiomCategory.STRUCTURAL,
    rationale=(
        "Comparing a boolean with `true` or `false` is redundant, and for "
        "integer-like operands `x == true` silently means `x == 1`."
    ),
    non_compliant="""\
if (done == true) {
    finish();
}""",
    compliant="""\
if (done) {
    finish();
}""",
    fix_strategy="Use the operand itself (`a`) or its negation (`!a`).",
    cross_references=["BooleanReturnIfElse"],
)

_define(
    rule_id="ExplicitOperatorCall",
    title="Overloaded operator called by name",
    category=IdiomCategory.CLASS,
    rationale=(
        "Operators are overloaded so that they can be used with operator "
        "syntax.  Spelling out `a.operator+(b)` defeats the purpose and "
        "obscures the expression."
    ),
    non_compliant="""\
Vec sum = a.operator+(b);
bool same = operator==(a, b);""",
    compliant="""\
Vec sum = a + b;
bool same = a == b;""",
    fix_strategy=(
        "Use operator syntax.  Qualified base-class calls such as "
        "`Base::operator=(other)` and `operator new` / `operator delete` "
        "are exempt."
    ),
    cross_references=["InequalityNotDelegating"],
)

# ───────────────────────────────────────────────────────────────────────
#  Structural: branches
# ───────────────────────────────────────────────────────────────────────

_define(
    rule_id="BooleanReturnIfElse",
    title="Return the condition directly",
    category=IdiomCategory.STRUCTURAL,
    rationale=(
        "`if (c) return true; else return false;` is four lines that say "
        "`return c;`."
    ),
    non_compliant="""\
bool isPositive(int x) {
    if (x > 0) {
        return true;
    } else {
        return false;
    }
}""",
    compliant="""\
bool isPositive(int x) {
    return x > 0;
}""",
    fix_strategy="Return the condition (`return c;`) or its negation (`return !(c);`).",
    cross_references=["RedundantElseAfterReturn", "BoolLiteralComparison"],
)

_define(
    rule_id="RedundantElseAfterReturn",
    title="Redundant else after a branch that always exits",
    category=IdiomCategory.STRUCTURAL,
    rationale=(
        "When the then-branch always returns, throws, breaks, continues or "
        "jumps, the `else` only adds nesting."
    ),
    non_compliant="""\
if (!ok) {
    return -1;
} else {
    run();
}""",
    compliant="""\
if (!ok) {
    return -1;
}
run();""",
    fix_strategy="Drop the `else` and un-indent its body.",
    cross_references=["BooleanReturnIfElse"],
)

_define(
    rule_id="DuplicateBranchCode",
    title="Duplicated code in sibling branches",
    category=IdiomCategory.STRUCTURAL,
    rationale=(
        "Branches that start or end with the same statements, or that are "
        "identical apart from a single name or literal, are usually the "
        "result of copy and paste.  The shared part belongs outside the "
        "branch and the difference in a variable."
    ),
    non_compliant="""\
if (left) {
    x = a;
    draw(x);
} else {
    x = b;
    draw(x);
}""",
    compliant="""\
x = left ? a : b;
draw(x);""",
    fix_strategy=(
        "Hoist common leading statements before the branch and common "
        "trailing statements after it; express a single differing operand "
        "with a conditional expression or a variable."
    ),
)

# ───────────────────────────────────────────────────────────────────────
#  Dataflow
# ───────────────────────────────────────────────────────────────────────

_define(
    rule_id="UnusedVariable",
    title="Unused local variable",
    category=IdiomCategory.DATAFLOW,
    rationale=(
        "A variable that is never read is noise at best and a sign of an "
        "unfinished change at worst."
    ),
    non_compliant="""\
int area(int w, int h) {
    int unused = w * 2;
    return w * h;
}""",
    compliant="""\
int area(int w, int h) {
    return w * h;
}""",
    fix_strategy=(
        "Remove the variable, or mark it `[[maybe_unused]]` if it exists for "
        "debugging.  Objects of class type constructed with arguments are "
        "exempt (RAII guards)."
    ),
    cross_references=["UnreachableCode"],
)

_define(
    rule_id="UnreachableCode",
    title="Unreachable code",
    category=IdiomCategory.DATAFLOW,
    rationale=(
        "Statements no control path can reach are dead weight and often "
        "reveal a misplaced return or break."
    ),
    non_compliant="""\
int f() {
    return 1;
    int unused = 2;
}""",
    compliant="""\
int f() {
    return 1;
}""",
    fix_strategy=(
        "Delete the unreachable statements or restructure the control flow "
        "so the intended path reaches them."
    ),
    cross_references=["UnusedVariable"],
)

_define(
    rule_id="UnsignedForNonNegative",
    title="Non-negative quantity held in a signed type",
    category=IdiomCategory.DATAFLOW,
    rationale=(
        "An index or count that never goes negative and is compared with "
        "sizes is naturally unsigned.  Keeping it signed forces mixed "
        "signed/unsigned comparisons and casts."
    ),
    non_compliant="""\
for (int i = 0; i < v.size(); ++i) {
    sum += v[i];
}""",
    compliant="""\
for (std::size_t i = 0; i < v.size(); ++i) {
    sum += v[i];
}""",
    fix_strategy=(
        "Declare the variable `std::size_t` (or another unsigned type).  "
        "Informational only: never reported when any participating symbol "
        "cannot be resolved."
    ),
)

# ───────────────────────────────────────────────────────────────────────
#  Class & iterator idioms
# ───────────────────────────────────────────────────────────────────────

_define(
    rule_id="PreferMemberInitList",
    title="Initialise members in the constructor initializer list",
    category=IdiomCategory.CLASS,
    rationale=(
        "Assigning in the constructor body default-constructs each member "
        "first and then overwrites it.  The initializer list constructs it "
        "once, and is the only option for const and reference members."
    ),
    non_compliant="""\
Point::Point(int x, int y) {
    x_ = x;
    y_ = y;
}""",
    compliant="""\
Point::Point(int x, int y) : x_(x), y_(y) {}""",
    fix_strategy="Move each leading `member = value;` into the initializer list as `member(value)`.",
    cross_references=["DefaultableSpecialMember"],
)

_define(
    rule_id="RedundantThisQualifier",
    title="Redundant this-> qualifier",
    category=IdiomCategory.CLASS,
    rationale=(
        "Inside a member function members are in scope; `this->m` is only "
        "needed when a parameter or local hides `m`."
    ),
    non_compliant="""\
int Counter::get() const {
    return this->count_;
}""",
    compliant="""\
int Counter::get() const {
    return count_;
}""",
    fix_strategy="Drop `this->`.",
)

_define(
    rule_id="MissingConstQualifier",
    title="Member function can be const",
    category=IdiomCategory.CLASS,
    rationale=(
        "A member function that does not modify the object should say so.  "
        "`const` lets it be called on const objects and documents the "
        "contract for readers and the compiler."
    ),
    non_compliant="""\
class Account {
public:
    int balance() { return balance_; }
private:
    int balance_;
};""",
    compliant="""\
class Account {
public:
    int balance() const { return balance_; }
private:
    int balance_;
};""",
    fix_strategy=(
        "Add `const` after the parameter list (in the declaration and any "
        "out-of-line definition)."
    ),
)

_define(
    rule_id="InequalityNotDelegating",
    title="operator!= should delegate to operator==",
    category=IdiomCategory.CLASS,
    rationale=(
        "Implementing `!=` separately from `==` duplicates logic that can "
        "drift apart.  Defining it as the negation of `==` keeps them "
        "consistent by construction."
    ),
    non_compliant="""\
bool operator!=(const P& a, const P& b) {
    return a.x != b.x || a.y != b.y;
}""",
    compliant="""\
bool operator!=(const P& a, const P& b) {
    return !(a == b);
}""",
    fix_strategy="Implement the body as `return !(lhs == rhs);`.",
    cross_references=["ExplicitOperatorCall"],
)

_define(
    rule_id="DefaultableSpecialMember",
    title="Special member function can be defaulted",
    category=IdiomCategory.CLASS,
    rationale=(
        "An empty constructor or destructor, or a copy/move operation that "
        "just copies each member, is exactly what the compiler generates.  "
        "Writing it out by hand adds code to maintain and can suppress "
        "implicit move operations."
    ),
    non_compliant="""\
struct P {
    P() {}
    ~P() {}
    P(const P& o) : x(o.x), y(o.y) {}
    int x, y;
};""",
    compliant="""\
struct P {
    P() = default;
    ~P() = default;
    P(const P& o) = default;
    int x, y;
};""",
    fix_strategy="Replace the body with `= default`.",
    cross_references=["PreferMemberInitList"],
)

_define(
    rule_id="IteratorAliasUsage",
    title="Iterator should use its declared type aliases",
    category=IdiomCategory.CLASS,
    rationale=(
        "Iterator classes declare `reference`, `pointer` and `value_type` "
        "aliases so that their interface is stated in terms of them.  "
        "Spelling the underlying type in `operator*` / `operator->` lets the "
        "two drift apart."
    ),
    non_compliant="""\
class Iter {
public:
    using reference = int&;
    int& operator*() const;
    Iter& operator++();
    bool operator==(const Iter&) const;
};""",
    compliant="""\
class Iter {
public:
    using reference = int&;
    reference operator*() const;
    Iter& operator++();
    bool operator==(const Iter&) const;
};""",
    fix_strategy="Use the alias name as the return type.",
    cross_references=["ArrowNotDelegating"],
)

_define(
    rule_id="ArrowNotDelegating",
    title="operator-> should delegate to operator*",
    category=IdiomCategory.CLASS,
    rationale=(
        "`operator->` must agree with `operator*`.  Returning the address of "
        "the dereferenced object guarantees it."
    ),
    non_compliant="""\
T* Iter::operator->() const {
    return &node_->value;
}""",
    compliant="""\
T* Iter::operator->() const {
    return &**this;
}""",
    fix_strategy="Implement the body as `return &**this;` (or `std::addressof(**this)`).",
    cross_references=["IteratorAliasUsage"],
)


# ═══════════════════════════════════════════════════════════════════════
#  Queries
# ═══════════════════════════════════════════════════════════════════════

def get_rule(rule_id: str) -> Optional[IdiomRule]:
    """Look up a single rule by its ID (e.g. 'MagicNumber')."""
    return _RULES.get(rule_id)


def get_all_rules() -> Dict[str, IdiomRule]:
    return dict(_RULES)


def get_rules_by_category(category: Union[str, IdiomCategory]) -> Dict[str, IdiomRule]:
    """Rules of one category; plain strings match case-insensitively."""
    wanted = category.value if isinstance(category, IdiomCategory) else category
    return {k: v for k, v in _RULES.items() if v.category.value.lower() == wanted.lower()}


def related_rules(rule_id: str) -> List[IdiomRule]:
    """Rules this one names plus rules that name it, in rule-id order."""
    rule = get_rule(rule_id)
    if rule is None:
        return []
    related = set(rule.cross_references)
    related.update(other.rule_id for other in _RULES.values() if rule_id in other.cross_references)
    return [_RULES[r] for r in sorted(related) if r in _RULES]


# ═══════════════════════════════════════════════════════════════════════
#  Rendering
# ═══════════════════════════════════════════════════════════════════════

def format_rule_explanation(rule_id: str) -> str:
    """Markdown card for one rule: why, before/after, fix, related rules."""
    rule = get_rule(rule_id)
    if rule is None:
        return f"Unknown rule: {rule_id}"

    lines = [
        f"## {rule.rule_id}: {rule.title}",
        f"*{rule.category.value} idiom*",
        "",
        f"**Why**: {rule.rationale}",
        "",
        "**Instead of**",
        "```cpp",
        rule.non_compliant,
        "```",
        "",
        "**Write**",
        "```cpp",
        rule.compliant,
        "```",
        "",
        f"**Fix**: {rule.fix_strategy}",
    ]
    related = related_rules(rule_id)
    if related:
        lines += ["", "**See also**"]
        lines += [f"- `{other.rule_id}`: {other.title}" for other in related]
    return "\n".join(lines)


def format_catalogue() -> str:
    """Markdown index of every rule, one table per category."""
    grouped: Dict[IdiomCategory, List[IdiomRule]] = defaultdict(list)
    for rule in _RULES.values():
        grouped[rule.category].append(rule)

    sections = []
    for category in IdiomCategory:
        rules = sorted(grouped.get(category, []), key=lambda r: r.rule_id)
        if not rules:
            continue
        rows = [f"| `{r.rule_id}` | {r.title} |" for r in rules]
        sections.append("\n".join([f"### {category.value} ({len(rules)})", "",
                                   "| Rule | Title |", "|---|---|", *rows]))
    return "\n\n".join(sections)
