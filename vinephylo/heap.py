"""Pairing min-heap with two-pass melding."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional, TextIO, Tuple, Union


@dataclass(eq=False)
class HeapNode:
    """A node of a pairing heap."""

    val: float
    item: Any = None
    child: Optional["HeapNode"] = None
    sibling: Optional["HeapNode"] = None


def meld(a: Optional[HeapNode], b: Optional[HeapNode]) -> Optional[HeapNode]:
    """Merge two heaps; the root with the smaller value (ties to a) wins."""
    if a is None:
        return b
    if b is None:
        return a
    if a.val <= b.val:
        b.sibling = a.child
        a.child = b
        return a
    a.sibling = b.child
    b.child = a
    return b


def meld_two_pass(first: Optional[HeapNode]) -> Optional[HeapNode]:
    """Combine a sibling chain into one heap using the two-pass strategy."""
    if first is None or first.sibling is None:
        return first

    pairs: List[HeapNode] = []
    node = first
    while node is not None:
        a = node
        b = a.sibling
        node = b.sibling if b is not None else None
        a.sibling = None
        if b is not None:
            b.sibling = None
            a = meld(a, b)
        pairs.append(a)

    acc: Optional[HeapNode] = None
    for tree in reversed(pairs):
        acc = tree if acc is None else meld(acc, tree)
    return acc


class PairingHeap:
    """Min-heap of (value, item) pairs."""

    def __init__(self) -> None:
        self._root: Optional[HeapNode] = None
        self._size = 0

    def push(self, val: float, item: Any = None) -> None:
        self._root = meld(self._root, HeapNode(val, item))
        self._size += 1

    def peek(self) -> Tuple[float, Any]:
        if self._root is None:
            raise IndexError("peek from empty heap")
        return self._root.val, self._root.item

    def pop(self) -> Tuple[float, Any]:
        """Remove and return the smallest (value, item) pair."""
        root = self._root
        if root is None:
            raise IndexError("pop from empty heap")
        self._root = meld_two_pass(root.child)
        self._size -= 1
        return root.val, root.item

    def __len__(self) -> int:
        return self._size

    def __bool__(self) -> bool:
        return self._root is not None

    def dump(self, stream: TextIO) -> None:
        """Write a description of every node, siblings before children."""
        tasks: List[Union[HeapNode, str]] = [] if self._root is None else [self._root]
        while tasks:
            task = tasks.pop()
            if isinstance(task, str):
                stream.write(task)
                continue
            stream.write(f"Heap Node:\n\tval = {task.val:f}\n")
            follow: List[Union[HeapNode, str]] = []
            if task.sibling is None:
                follow.append("\tsibling = NULL\n")
            else:
                follow += [f"\tsibling = ({task.sibling.val:f})\n", task.sibling]
            if task.child is None:
                follow.append("\tchild = NULL\n")
            else:
                follow += [f"\tchild = ({task.child.val:f})\n", task.child]
            tasks.extend(reversed(follow))