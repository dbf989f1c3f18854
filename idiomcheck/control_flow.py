"""
Per-function control-flow graphs.

``build_cfg(function)`` lowers a function body into basic blocks joined by
typed edges.  Block 0 is the single entry, block 1 the single synthetic
exit that receives every ``return``/``throw`` and the fall-off-end edge.
After construction a forward BFS from entry marks every block reachable or
not; the graph is read-only from then on.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from idiomcheck.syntax_helpers import literal_number, strip_parens
from idiomcheck.syntax_model import NodeKind, SyntaxNode

logger = logging.getLogger(__name__)


class EdgeKind(str, Enum):
    UNCONDITIONAL = "unconditional"
    TRUE_BRANCH = "true"
    FALSE_BRANCH = "false"
    LOOP_BACK = "loop_back"
    RETURN = "return"
    FALLTHROUGH = "fallthrough"


@dataclass(frozen=True)
class CFGEdge:
    source: int
    target: int
    kind: EdgeKind


@dataclass
class BasicBlock:
    id: int
    label: str
    statements: List[SyntaxNode] = field(default_factory=list)
    successors: List[CFGEdge] = field(default_factory=list)
    predecessors: List[CFGEdge] = field(default_factory=list)
    reachable: bool = False

    def __repr__(self) -> str:
        return f"BasicBlock({self.id} {self.label}, {len(self.statements)} stmts)"


class ControlFlowGraph:
    """Basic blocks of one function; ``entry`` is block 0, ``exit`` block 1."""

    ENTRY = 0
    EXIT = 1

    def __init__(self, function: SyntaxNode):
        self.function = function
        self.blocks: List[BasicBlock] = []
        self._placement: Dict[int, int] = {}

    @property
    def entry(self) -> BasicBlock:
        return self.blocks[self.ENTRY]

    @property
    def exit(self) -> BasicBlock:
        return self.blocks[self.EXIT]

    def edges(self) -> List[CFGEdge]:
        return [edge for block in self.blocks for edge in block.successors]

    def block_of(self, node: SyntaxNode) -> Optional[BasicBlock]:
        """Block holding ``node`` or its nearest enclosing lowered statement."""
        for candidate in (node, *node.ancestors()):
            index = self._placement.get(id(candidate))
            if index is not None:
                return self.blocks[index]
            if candidate is self.function:
                break
        return None

    def is_reachable(self, node: SyntaxNode) -> bool:
        block = self.block_of(node)
        return block.reachable if block is not None else True

    def unreachable_blocks(self) -> List[BasicBlock]:
        return [b for b in self.blocks if not b.reachable]

    def unreachable_statements(self) -> List[SyntaxNode]:
        return [s for b in self.unreachable_blocks() for s in b.statements]


def build_cfg(function: SyntaxNode) -> ControlFlowGraph:
    builder = _CFGBuilder(function)
    cfg = builder.build()
    logger.debug("CFG for %s: %d blocks, %d unreachable", function.name,
                 len(cfg.blocks), len(cfg.unreachable_blocks()))
    return cfg


def is_constant_true(condition: Optional[SyntaxNode]) -> bool:
    """``while (true)``, ``while (1)`` and an absent ``for`` condition."""
    if condition is None:
        return True
    condition = strip_parens(condition)
    if condition.kind is NodeKind.LITERAL:
        if condition.literal_kind == "bool":
            return condition.value == "true"
        value = literal_number(condition)
        return value is not None and value != 0
    return False


# ═══════════════════════════════════════════════════════════════════════
#  Builder
# ═══════════════════════════════════════════════════════════════════════

class _CFGBuilder:
    def __init__(self, function: SyntaxNode):
        self.cfg = ControlFlowGraph(function)
        self.break_targets: List[BasicBlock] = []
        self.continue_targets: List[BasicBlock] = []
        self.labels: Dict[str, BasicBlock] = {}

    # ── primitives ──

    def new_block(self, label: str) -> BasicBlock:
        block = BasicBlock(len(self.cfg.blocks), label)
        self.cfg.blocks.append(block)
        return block

    @staticmethod
    def connect(source: Optional[BasicBlock], target: BasicBlock, kind: EdgeKind) -> None:
        if source is None:
            return
        edge = CFGEdge(source.id, target.id, kind)
        source.successors.append(edge)
        target.predecessors.append(edge)

    def place(self, stmt: SyntaxNode, block: BasicBlock) -> None:
        block.statements.append(stmt)
        self.cfg._placement[id(stmt)] = block.id

    def label_block(self, name: Optional[str]) -> BasicBlock:
        key = name or ""
        if key not in self.labels:
            self.labels[key] = self.new_block(f"label {key}")
        return self.labels[key]

    @staticmethod
    def live(block: BasicBlock) -> Optional[BasicBlock]:
        return block if block.predecessors else None

    # ── driver ──

    def build(self) -> ControlFlowGraph:
        entry = self.new_block("entry")
        exit_ = self.new_block("exit")
        body = self.cfg.function.child("body")
        first = self.new_block("body")
        self.connect(entry, first, EdgeKind.UNCONDITIONAL)
        end = self.lower(body, first) if body is not None else first
        self.connect(end, exit_, EdgeKind.FALLTHROUGH)
        self.mark_reachable()
        return self.cfg

    def mark_reachable(self) -> None:
        blocks = self.cfg.blocks
        queue = deque([ControlFlowGraph.ENTRY])
        blocks[ControlFlowGraph.ENTRY].reachable = True
        while queue:
            block = blocks[queue.popleft()]
            for edge in block.successors:
                target = blocks[edge.target]
                if not target.reachable:
                    target.reachable = True
                    queue.append(target.id)

    # ── lowering ──

    def lower(self, stmt: Optional[SyntaxNode], current: Optional[BasicBlock]) -> Optional[BasicBlock]:
        """Lower ``stmt`` starting in ``current``; return the fall-out block or None."""
        if stmt is None:
            return current
        k = stmt.kind
        if k is NodeKind.LABEL:
            target = self.label_block(stmt.name)
            self.connect(current, target, EdgeKind.FALLTHROUGH)
            self.place(stmt, target)
            body = stmt.child("body")
            return self.lower(body, target) if body is not None else target

        if current is None:
            # nothing flows here: start a fresh block with no predecessors
            current = self.new_block("dead")

        if k is NodeKind.COMPOUND:
            self.place(stmt, current)
            for child in stmt.children:
                current = self.lower(child, current)
            return current
        if k is NodeKind.IF:
            return self._lower_if(stmt, current)
        if k in (NodeKind.WHILE, NodeKind.RANGE_FOR):
            return self._lower_while(stmt, current)
        if k is NodeKind.FOR:
            return self._lower_for(stmt, current)
        if k is NodeKind.DO_WHILE:
            return self._lower_do(stmt, current)
        if k is NodeKind.SWITCH:
            return self._lower_switch(stmt, current)
        if k is NodeKind.TRY:
            return self._lower_try(stmt, current)
        if k in (NodeKind.RETURN, NodeKind.THROW):
            self.place(stmt, current)
            self.connect(current, self.cfg.exit, EdgeKind.RETURN)
            return None
        if k is NodeKind.BREAK:
            self.place(stmt, current)
            if self.break_targets:
                self.connect(current, self.break_targets[-1], EdgeKind.UNCONDITIONAL)
            return None
        if k is NodeKind.CONTINUE:
            self.place(stmt, current)
            if self.continue_targets:
                self.connect(current, self.continue_targets[-1], EdgeKind.LOOP_BACK)
            return None
        if k is NodeKind.GOTO:
            self.place(stmt, current)
            self.connect(current, self.label_block(stmt.name), EdgeKind.UNCONDITIONAL)
            return None
        if k is NodeKind.UNKNOWN_STMT:
            self.place(stmt, current)
            for child in stmt.children_with("body"):
                current = self.lower(child, current)
            return current

        self.place(stmt, current)
        return current

    def _lower_if(self, stmt: SyntaxNode, current: BasicBlock) -> Optional[BasicBlock]:
        self.place(stmt, current)
        init = stmt.child("init")
        if init is not None:
            current = self.lower(init, current)
            if current is None:
                current = self.new_block("dead")
        then_block = self.new_block("then")
        self.connect(current, then_block, EdgeKind.TRUE_BRANCH)
        then_end = self.lower(stmt.child("then"), then_block)

        join = self.new_block("join")
        self.connect(then_end, join, EdgeKind.UNCONDITIONAL)
        otherwise = stmt.child("else")
        if otherwise is not None:
            else_block = self.new_block("else")
            self.connect(current, else_block, EdgeKind.FALSE_BRANCH)
            self.connect(self.lower(otherwise, else_block), join, EdgeKind.UNCONDITIONAL)
        else:
            self.connect(current, join, EdgeKind.FALSE_BRANCH)
        return self.live(join)

    def _lower_while(self, stmt: SyntaxNode, current: BasicBlock) -> Optional[BasicBlock]:
        self.place(stmt, current)
        cond = self.new_block("loop_cond")
        self.connect(current, cond, EdgeKind.UNCONDITIONAL)
        body_block = self.new_block("loop_body")
        after = self.new_block("loop_exit")
        self.connect(cond, body_block, EdgeKind.TRUE_BRANCH)
        if stmt.kind is NodeKind.RANGE_FOR or not is_constant_true(stmt.child("condition")):
            self.connect(cond, after, EdgeKind.FALSE_BRANCH)

        self.break_targets.append(after)
        self.continue_targets.append(cond)
        body_end = self.lower(stmt.child("body"), body_block)
        self.continue_targets.pop()
        self.break_targets.pop()

        self.connect(body_end, cond, EdgeKind.LOOP_BACK)
        return self.live(after)

    def _lower_for(self, stmt: SyntaxNode, current: BasicBlock) -> Optional[BasicBlock]:
        self.place(stmt, current)
        init = stmt.child("init")
        if init is not None:
            current = self.lower(init, current) or self.new_block("dead")
        cond = self.new_block("loop_cond")
        self.connect(current, cond, EdgeKind.UNCONDITIONAL)
        body_block = self.new_block("loop_body")
        update = self.new_block("loop_update")
        after = self.new_block("loop_exit")
        self.connect(cond, body_block, EdgeKind.TRUE_BRANCH)
        if not is_constant_true(stmt.child("condition")):
            self.connect(cond, after, EdgeKind.FALSE_BRANCH)

        self.break_targets.append(after)
        self.continue_targets.append(update)
        body_end = self.lower(stmt.child("body"), body_block)
        self.continue_targets.pop()
        self.break_targets.pop()

        self.connect(body_end, update, EdgeKind.UNCONDITIONAL)
        self.connect(update, cond, EdgeKind.LOOP_BACK)
        return self.live(after)

    def _lower_do(self, stmt: SyntaxNode, current: BasicBlock) -> Optional[BasicBlock]:
        self.place(stmt, current)
        body_block = self.new_block("do_body")
        cond = self.new_block("do_cond")
        after = self.new_block("loop_exit")
        self.connect(current, body_block, EdgeKind.UNCONDITIONAL)

        self.break_targets.append(after)
        self.continue_targets.append(cond)
        body_end = self.lower(stmt.child("body"), body_block)
        self.continue_targets.pop()
        self.break_targets.pop()

        self.connect(body_end, cond, EdgeKind.UNCONDITIONAL)
        self.connect(cond, body_block, EdgeKind.LOOP_BACK)
        if not is_constant_true(stmt.child("condition")):
            self.connect(cond, after, EdgeKind.FALSE_BRANCH)
        return self.live(after)

    def _lower_switch(self, stmt: SyntaxNode, current: BasicBlock) -> Optional[BasicBlock]:
        self.place(stmt, current)
        init = stmt.child("init")
        if init is not None:
            current = self.lower(init, current) or self.new_block("dead")
        dispatch = current
        after = self.new_block("switch_exit")
        self.break_targets.append(after)

        body = stmt.child("body")
        previous: Optional[BasicBlock] = None
        has_default = False
        for child in (body.children if body is not None and body.kind is NodeKind.COMPOUND
                      else [body] if body is not None else []):
            if child.kind is not NodeKind.CASE:
                # statements ahead of the first label are never executed
                previous = self.lower(child, previous)
                continue
            case_block = self.new_block("case")
            self.connect(dispatch, case_block, EdgeKind.TRUE_BRANCH)
            self.connect(previous, case_block, EdgeKind.FALLTHROUGH)
            has_default = has_default or child.has("default")
            self.place(child, case_block)
            previous = case_block
            for inner in child.children_with("body"):
                previous = self.lower(inner, previous)

        self.break_targets.pop()
        self.connect(previous, after, EdgeKind.UNCONDITIONAL)
        if not has_default:
            self.connect(dispatch, after, EdgeKind.FALSE_BRANCH)
        return self.live(after)

    def _lower_try(self, stmt: SyntaxNode, current: BasicBlock) -> Optional[BasicBlock]:
        self.place(stmt, current)
        try_block = self.new_block("try")
        self.connect(current, try_block, EdgeKind.UNCONDITIONAL)
        join = self.new_block("try_join")
        body = stmt.child("body")
        self.connect(self.lower(body, try_block) if body is not None else try_block,
                     join, EdgeKind.UNCONDITIONAL)
        for handler in stmt.children_with("handler"):
            handler_block = self.new_block("catch")
            self.connect(try_block, handler_block, EdgeKind.UNCONDITIONAL)
            self.place(handler, handler_block)
            handler_body = handler.child("body")
            end = self.lower(handler_body, handler_block) if handler_body is not None else handler_block
            self.connect(end, join, EdgeKind.UNCONDITIONAL)
        return self.live(join)
