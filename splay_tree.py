# splay_tree.py
import logging

logger = logging.getLogger(__name__)


class RotationError(ValueError):
    """Raised when a rotation is requested on a node that is not on the required side of its parent."""


class Node:
    """
    Represents a node in the splay tree.
    Each node has a key, a value, left and right children, and a parent.
    The parent link is only a back-reference used while splaying.
    """
    def __init__(self, key, value=None, parent=None):
        self.key = key
        self.value = value
        self.left = None
        self.right = None
        self.parent = parent

    def __repr__(self):
        return f"Node({self.key!r}, {self.value!r})"


class SplayTree:
    """
    Dictionary implemented as a splay tree.
    Multiple entries with the same key are permitted; a new duplicate is inserted into
    the left subtree of an equal key. Every put and every get splays a node to the root.
    """
    def __init__(self):
        self.make_empty()

    def make_empty(self):
        """Removes all the entries from the dictionary."""
        self.root = None
        self._size = 0
        self.total_rotations = 0  # To track the number of rotations for performance metrics

    def size(self):
        """Returns the number of entries stored in the dictionary."""
        return self._size

    def is_empty(self):
        return self._size == 0

    def __len__(self):
        return self._size

    def __bool__(self):
        return not self.is_empty()

    def _rotate_right(self, node):
        """Rotates node up through its parent. Works only if node is a left child."""
        if node is None or node.parent is None or node.parent.left is not node:
            logger.error(f"Illegal call to _rotate_right() on {node!r}")
            raise RotationError("Illegal call to _rotate_right(): node is not a left child")

        ex_parent = node.parent
        subtree_parent = ex_parent.parent

        # Move node's right subtree to its former parent.
        ex_parent.left = node.right
        if node.right is not None:
            node.right.parent = ex_parent

        node.right = ex_parent
        ex_parent.parent = node

        node.parent = subtree_parent
        if subtree_parent is None:  # ex_parent was the root
            self.root = node
        elif subtree_parent.right is ex_parent:
            subtree_parent.right = node
        else:
            subtree_parent.left = node
        self.total_rotations += 1

    def _rotate_left(self, node):
        """Rotates node up through its parent. Works only if node is a right child."""
        if node is None or node.parent is None or node.parent.right is not node:
            logger.error(f"Illegal call to _rotate_left() on {node!r}")
            raise RotationError("Illegal call to _rotate_left(): node is not a right child")

        ex_parent = node.parent
        subtree_parent = ex_parent.parent

        # Move node's left subtree to its former parent.
        ex_parent.right = node.left
        if node.left is not None:
            node.left.parent = ex_parent

        node.left = ex_parent
        ex_parent.parent = node

        node.parent = subtree_parent
        if subtree_parent is None:  # ex_parent was the root
            self.root = node
        elif subtree_parent.right is ex_parent:
            subtree_parent.right = node
        else:
            subtree_parent.left = node
        self.total_rotations += 1

    def _zig(self, x):
        """Rotates x up through its parent, which must be the root."""
        if x.parent.left is x:
            self._rotate_right(x)
        else:
            self._rotate_left(x)

    def _zig_zig(self, x):
        """
        Moves x two levels up when x and its parent are children on the same side.
        The parent is rotated up through the grandparent first, then x through the parent.
        """
        p = x.parent
        if p.left is x:
            self._rotate_right(p)
            self._rotate_right(x)
        else:
            self._rotate_left(p)
            self._rotate_left(x)

    def _zig_zag(self, x):
        """Moves x two levels up when x and its parent are children on opposite sides."""
        if x.parent.left is x:
            # left child of a right child
            self._rotate_right(x)
            self._rotate_left(x)
        else:
            # right child of a left child
            self._rotate_left(x)
            self._rotate_right(x)

    @staticmethod
    def _is_same_side(x):
        p = x.parent
        g = p.parent
        return (p.left is x and g.left is p) or (p.right is x and g.right is p)

    def _splay(self, x):
        """Splays the given node x to the root of the tree."""
        p = x.parent
        while p is not None:
            if p.parent is None:
                # Zig step
                self._zig(x)
            elif self._is_same_side(x):
                self._zig_zig(x)
            else:
                self._zig_zag(x)
            p = x.parent

    def put(self, key, value=None):
        """
        Inserts a new (key, value) entry and splays the new node to the root.
        Entries with equal keys (or equal keys and values) coexist.
        """
        self._size += 1
        if self.root is None:
            self.root = Node(key, value)
            return

        z = self.root
        while True:
            if key <= z.key:
                if z.left is None:
                    z.left = Node(key, value, parent=z)
                    self._splay(z.left)
                    return
                z = z.left
            else:
                if z.right is None:
                    z.right = Node(key, value, parent=z)
                    self._splay(z.right)
                    return
                z = z.right

    def get(self, key, default=None):
        """
        Searches for an entry with the given key and returns its value.
        The matching node is splayed to the root; on a miss the last node visited is
        splayed instead and default is returned. If several entries share the key,
        whichever one the search reaches first is returned.
        """
        z = self.root
        while z is not None:
            if key < z.key:
                if z.left is None:
                    break
                z = z.left
            elif key > z.key:
                if z.right is None:
                    break
                z = z.right
            else:
                self._splay(z)
                return z.value
        if z is not None:
            # Splay the last node visited to the root.
            self._splay(z)
        return default

    def entries(self):
        """
        Yields (depth, key, value) triples: right subtree first, then the node, then
        the left subtree. This is the order of the text rendering.
        """
        stack = []
        node, depth = self.root, 0
        while stack or node is not None:
            while node is not None:
                stack.append((node, depth))
                node, depth = node.right, depth + 1
            node, depth = stack.pop()
            yield depth, node.key, node.value
            node, depth = node.left, depth + 1

    def __str__(self):
        return "".join("\n" + "    " * depth + f"{key}{value}"
                       for depth, key, value in self.entries())

    def show(self):
        print(self)

    def items(self):
        """Yields (key, value) pairs in key order without splaying."""
        stack = []
        node = self.root
        while stack or node is not None:
            while node is not None:
                stack.append(node)
                node = node.left
            node = stack.pop()
            yield node.key, node.value
            node = node.right

    def keys(self):
        return [key for key, _ in self.items()]

    def _nodes(self):
        stack = []
        node = self.root
        while stack or node is not None:
            while node is not None:
                stack.append(node)
                node = node.left
            node = stack.pop()
            yield node
            node = node.right

    def depth_of(self, node):
        """Calculates the depth of a node from the root."""
        depth = 0
        while node.parent is not None:
            node = node.parent
            depth += 1
        return depth

    def depths(self):
        """Returns the depth of every node in key order, from a single traversal."""
        result = []
        stack = []
        node, depth = self.root, 0
        while stack or node is not None:
            while node is not None:
                stack.append((node, depth))
                node, depth = node.left, depth + 1
            node, depth = stack.pop()
            result.append(depth)
            node, depth = node.right, depth + 1
        return result

    def height(self):
        return max((depth for depth, _, _ in self.entries()), default=-1)

    def check_invariants(self):
        """Verifies ordering, parent links and size. Raises AssertionError on the first violation."""
        if self.root is None:
            assert self._size == 0, f"empty tree reports size {self._size}"
            return
        assert self.root.parent is None, "root has a parent"

        count = 0
        stack = [(self.root, None, None)]  # node, lower bound, upper bound (both inclusive)
        while stack:
            node, low, high = stack.pop()
            count += 1
            assert count <= self._size, "more nodes reachable than entries stored (cycle?)"
            if low is not None:
                assert node.key >= low, f"key {node.key!r} is less than {low!r}"
            if high is not None:
                assert node.key <= high, f"key {node.key!r} is greater than {high!r}"
            if node.left is not None:
                assert node.left.parent is node, f"left child of {node!r} has a wrong parent"
                stack.append((node.left, low, node.key))
            if node.right is not None:
                assert node.right.parent is node, f"right child of {node!r} has a wrong parent"
                stack.append((node.right, node.key, high))
        assert count == self._size, f"{count} nodes reachable but size is {self._size}"
