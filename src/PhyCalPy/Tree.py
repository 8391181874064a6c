#! /usr/bin/env python
# -*- coding: utf-8 -*-

##############################################################################
##  -- PhyCalPy --
##  Library for Calibrated Phylogenetic Tree Priors and their MCMC Samplers
##
##  Copyright 2025 Mark Kessler, Luay Nakhleh.
##  All rights reserved.
##
##  See "LICENSE.txt" for terms and conditions of usage.
##
##  If you use this work or any portion thereof in published work,
##  please cite it as:
##
##     Mark Kessler, Luay Nakhleh. 2025.
##
##############################################################################

"""
A rooted, strictly binary, time-calibrated tree stored as an arena of parallel
numpy arrays. Nodes are referred to by integer index only:

    leaves          -- indices 0 .. n - 1, height 0, carry a taxon name
    internal nodes  -- indices n .. 2n - 2
    parent[i]       -- index of the parent of node i, -1 at the root
    children[i]     -- the two child indices of node i, (-1, -1) for leaves

Last Edit : 10/17/26
First Included in Version : 1.0.0
Docs   - [x]
Tests  - [x]
Design - [x]
"""

from __future__ import annotations
from io import StringIO
from typing import Iterable, Sequence

import numpy as np
from Bio import Phylo
from Bio.Phylo.NewickIO import NewickError

# Relative tolerance for tips that should all sit at height 0
ULTRAMETRIC_TOLERANCE : float = 1e-6

#########################
#### EXCEPTION CLASS ####
#########################

class TreeError(Exception):
    """
    Error class for malformed trees, or for tree operations that cannot be
    carried out on the given nodes.
    """
    def __init__(self, message : str = "Error in Tree class") -> None:
        """
        Initialize a new error message

        Args:
            message (str, optional): The error message. Defaults to "Error in
                                     Tree class".
        Returns:
            N/A
        """
        self.message = message
        super().__init__(self.message)

####################
#### TREE CLASS ####
####################

class Tree:
    """
    Index-based rooted binary tree with node heights.

    The evaluator only ever reads a tree. Operators mutate heights and child
    pointers in place.
    """

    def __init__(self,
                 parent : Sequence[int],
                 heights : Sequence[float],
                 names : Sequence[str | None]) -> None:
        """
        Build a tree from its parent pointers.

        Raises:
            TreeError: If the arrays do not describe a single rooted binary tree
                       whose leaves occupy the first n indices.
        Args:
            parent (Sequence[int]): parent[i] is the parent of node i, -1 for
                                    the root.
            heights (Sequence[float]): Height of each node.
            names (Sequence[str | None]): Taxon name of each leaf. Entries for
                                          internal nodes are ignored.
        Returns:
            N/A
        """
        n_nodes = len(parent)
        if n_nodes < 1 or n_nodes % 2 == 0:
            raise TreeError(f"A binary tree needs an odd number of nodes, \
                             got {n_nodes}")
        if len(heights) != n_nodes or len(names) != n_nodes:
            raise TreeError("parent, heights and names must be the same length")

        self.parent : np.ndarray = np.asarray(parent, dtype=np.int64).copy()
        self.heights : np.ndarray = np.asarray(heights, dtype=float).copy()
        self.children : np.ndarray = np.full((n_nodes, 2), -1, dtype=np.int64)

        n_leaves = (n_nodes + 1) // 2
        self.names : list[str | None] = [names[i] if i < n_leaves else None
                                         for i in range(n_nodes)]

        roots = np.flatnonzero(self.parent == -1)
        if len(roots) != 1:
            raise TreeError(f"Expected exactly one root, found {len(roots)}")
        self.root : int = int(roots[0])

        fill = np.zeros(n_nodes, dtype=np.int64)
        for node in range(n_nodes):
            par = int(self.parent[node])
            if par == -1:
                continue
            if par < n_leaves or par >= n_nodes:
                raise TreeError(f"Node {node} has an invalid parent {par}")
            if fill[par] == 2:
                raise TreeError(f"Node {par} has more than two children")
            self.children[par, fill[par]] = node
            fill[par] += 1

        if np.any(fill[n_leaves:] != 2):
            raise TreeError("Every internal node must have exactly two children")

        self._name_index : dict[str, int] = {}
        for leaf in range(n_leaves):
            name = self.names[leaf]
            if name is None or name in self._name_index:
                raise TreeError(f"Leaf {leaf} has a missing or duplicate taxon \
                                  name: {name}")
            self._name_index[name] = leaf

    ######################
    #### CONSTRUCTION ####
    ######################

    @classmethod
    def from_newick(cls, newick_str : str) -> Tree:
        """
        Parse an ultrametric, binary newick string into a Tree. Branch lengths
        are turned into heights above the tips.

        Raises:
            TreeError: If the string is not parseable, not binary, has unnamed
                       or duplicate tips, or is not ultrametric.
        Args:
            newick_str (str): A newick string, e.g. "((A:1,B:1):1,C:2);"
        Returns:
            Tree: The parsed tree.
        """
        try:
            bio_tree = Phylo.read(StringIO(newick_str.strip()), "newick")
        except (NewickError, ValueError) as err:
            raise TreeError(f"Could not parse newick string: {err}") from err

        terminals = bio_tree.get_terminals()
        internals = [clade for clade in bio_tree.find_clades(order="postorder")
                     if not clade.is_terminal()]

        index : dict[int, int] = {}
        for i, clade in enumerate(terminals):
            index[id(clade)] = i
        for i, clade in enumerate(internals):
            index[id(clade)] = len(terminals) + i

        n_nodes = len(terminals) + len(internals)
        parent = [-1] * n_nodes
        depth = [0.0] * n_nodes

        for clade in bio_tree.find_clades(order="preorder"):
            if clade.is_terminal():
                continue
            if len(clade.clades) != 2:
                raise TreeError(f"Only binary trees are supported, found a \
                                  node with {len(clade.clades)} children")
            me = index[id(clade)]
            for child in clade.clades:
                child_index = index[id(child)]
                parent[child_index] = me
                depth[child_index] = depth[me] + (child.branch_length or 0.0)

        tip_depths = np.array(depth[:len(terminals)])
        tallest = float(np.max(tip_depths))
        if tallest - float(np.min(tip_depths)) > \
           ULTRAMETRIC_TOLERANCE * max(1.0, tallest):
            raise TreeError("Tree is not ultrametric")

        heights = [tallest - d for d in depth]
        for i in range(len(terminals)):
            heights[i] = 0.0

        names = [clade.name for clade in terminals] + [None] * len(internals)
        return cls(parent, heights, names)

    ####################
    #### ACCESSORS #####
    ####################

    def get_node_count(self) -> int:
        """
        Returns:
            int: Total number of nodes (2n - 1 for n leaves).
        """
        return int(self.parent.shape[0])

    def get_leaf_node_count(self) -> int:
        """
        Returns:
            int: Number of leaves (taxa).
        """
        return (self.get_node_count() + 1) // 2

    def get_internal_node_count(self) -> int:
        """
        Returns:
            int: Number of internal nodes, root included.
        """
        return self.get_leaf_node_count() - 1

    def get_internal_nodes(self) -> range:
        """
        Returns:
            range: Indices of every internal node, root included.
        """
        return range(self.get_leaf_node_count(), self.get_node_count())

    def get_height(self, node : int) -> float:
        return float(self.heights[node])

    def set_height(self, node : int, height : float) -> None:
        self.heights[node] = height

    def get_parent(self, node : int) -> int:
        return int(self.parent[node])

    def get_children(self, node : int) -> tuple[int, int]:
        left, right = self.children[node]
        return int(left), int(right)

    def get_name(self, node : int) -> str | None:
        return self.names[node]

    def is_leaf(self, node : int) -> bool:
        return node < self.get_leaf_node_count()

    def is_root(self, node : int) -> bool:
        return node == self.root

    def get_taxa(self) -> list[str]:
        """
        Returns:
            list[str]: Leaf names, in leaf index order.
        """
        return list(self.names[:self.get_leaf_node_count()])

    def taxon_index(self, name : str) -> int:
        """
        Look up the leaf carrying a taxon name.

        Args:
            name (str): A taxon name.
        Returns:
            int: The leaf index, or -1 if no leaf has that name.
        """
        return self._name_index.get(name, -1)

    ###################
    #### ALGORITHMS ###
    ###################

    def common_ancestor(self, a : int, b : int) -> int:
        """
        Most recent common ancestor of two nodes, found by repeatedly moving
        the lower of the two up one step. O(depth), no auxiliary structures.

        Nodes at equal heights may lie on one path through zero-length
        branches, so a tie only moves a node up once neither is an ancestor
        of the other.

        Raises:
            TreeError: If one node runs off the top of the tree, which means
                       the parent pointers are inconsistent.
        Args:
            a (int): A node index.
            b (int): A node index.
        Returns:
            int: Index of the MRCA of a and b.
        """
        while a != b:
            if self.heights[a] < self.heights[b]:
                a = int(self.parent[a])
            elif self.heights[b] < self.heights[a]:
                b = int(self.parent[b])
            elif self._reaches(a, b):
                return b
            elif self._reaches(b, a):
                return a
            else:
                b = int(self.parent[b])
            if a == -1 or b == -1:
                raise TreeError("Nodes do not share a root")
        return a

    def _reaches(self, node : int, ancestor : int) -> bool:
        """
        True if ancestor is on the path from node to the root. Stops as soon
        as the path climbs above the ancestor's height.
        """
        limit = self.heights[ancestor]
        while node != -1 and self.heights[node] <= limit:
            if node == ancestor:
                return True
            node = int(self.parent[node])
        return False

    def common_ancestor_of(self, nodes : Iterable[int]) -> int:
        """
        MRCA of a group of nodes.

        Args:
            nodes (Iterable[int]): At least one node index.
        Returns:
            int: Index of the MRCA.
        """
        it = iter(nodes)
        try:
            current = next(it)
        except StopIteration:
            raise TreeError("Cannot find the MRCA of an empty set of nodes")
        for node in it:
            current = self.common_ancestor(current, node)
        return current

    def leaf_count(self, node : int) -> int:
        """
        Number of leaves in the subtree rooted at node.

        Args:
            node (int): A node index.
        Returns:
            int: Leaf count of the subtree.
        """
        n_leaves = self.get_leaf_node_count()
        count = 0
        stack = [node]
        while stack:
            cur = stack.pop()
            if cur < n_leaves:
                count += 1
            else:
                stack.extend(int(c) for c in self.children[cur])
        return count

    def is_valid(self) -> bool:
        """
        Returns:
            bool: True if every node is no higher than its parent.
        """
        for node in range(self.get_node_count()):
            par = self.parent[node]
            if par != -1 and self.heights[node] > self.heights[par]:
                return False
        return True

    ##################
    #### MUTATION ####
    ##################

    def replace_child(self, node : int, old_child : int, new_child : int) -> None:
        """
        Put new_child in the child slot of node currently held by old_child,
        and point new_child's parent at node. The old child's parent pointer
        is left for the caller to fix.

        Raises:
            TreeError: If old_child is not a child of node.
        Args:
            node (int): The parent whose child slot changes.
            old_child (int): Current child of node.
            new_child (int): Replacement child.
        Returns:
            N/A
        """
        slots = np.flatnonzero(self.children[node] == old_child)
        if len(slots) == 0:
            raise TreeError(f"Node {old_child} is not a child of {node}")
        self.children[node, slots[0]] = new_child
        self.parent[new_child] = node

    def scale(self, factor : float) -> int:
        """
        Multiply every internal node height by factor. Tips stay at 0.

        Args:
            factor (float): A strictly positive scale factor.
        Returns:
            int: The number of heights that were scaled.
        """
        internal = self.get_leaf_node_count()
        self.heights[internal:] *= factor
        return self.get_internal_node_count()

    def copy(self) -> Tree:
        """
        Returns:
            Tree: An independent deep copy of this tree.
        """
        return Tree(self.parent, self.heights, self.names)

    def assign_from(self, other : Tree) -> None:
        """
        Overwrite this tree, in place, with the topology and heights of another
        tree on the same taxa with the same leaf numbering.

        Raises:
            TreeError: If the leaf names do not line up.
        Args:
            other (Tree): The source tree.
        Returns:
            N/A
        """
        if other.get_taxa() != self.get_taxa():
            raise TreeError("Can only assign from a tree with identical leaves")
        self.parent[:] = other.parent
        self.heights[:] = other.heights
        self.children[:] = other.children
        self.root = other.root

    def to_newick(self) -> str:
        """
        Returns:
            str: Newick representation with branch lengths.
        """
        def write(node : int) -> str:
            if self.is_leaf(node):
                label = str(self.names[node])
            else:
                left, right = self.get_children(node)
                label = f"({write(left)},{write(right)})"
            par = self.get_parent(node)
            if par == -1:
                return label
            length = self.heights[par] - self.heights[node]
            return f"{label}:{format(length, '.10g')}"

        return write(self.root) + ";"

    def __repr__(self) -> str:
        return f"Tree({self.to_newick()})"

############################
#### TREE BUILDER CLASS ####
############################

class TreeBuilder:
    """
    Assembles a Tree bottom-up: create leaves at fixed indices, then join two
    subtrees at a time under a new node of a given height. Internal nodes are
    numbered in creation order, so the last node created is the root.
    """

    def __init__(self, taxa : Sequence[str]) -> None:
        """
        Args:
            taxa (Sequence[str]): Taxon names in leaf index order.
        Returns:
            N/A
        """
        self.taxa : list[str] = list(taxa)
        n_nodes = 2 * len(self.taxa) - 1
        self.parent : list[int] = [-1] * n_nodes
        self.heights : list[float] = [0.0] * n_nodes
        self.used : list[bool] = [False] * len(self.taxa)
        self.next_internal : int = len(self.taxa)

    def leaf(self, index : int) -> int:
        """
        Claim the leaf at the given index.

        Raises:
            TreeError: If the leaf has already been placed.
        Args:
            index (int): Leaf index.
        Returns:
            int: The leaf index, for chaining.
        """
        if self.used[index]:
            raise TreeError(f"Taxon {self.taxa[index]} placed twice")
        self.used[index] = True
        return index

    def height(self, node : int) -> float:
        return self.heights[node]

    def connect(self, left : int, right : int, height : float) -> int:
        """
        Join two subtrees under a new internal node.

        Raises:
            TreeError: If the new node would be lower than either child, or
                       all internal nodes have already been used.
        Args:
            left (int): Root of the first subtree.
            right (int): Root of the second subtree.
            height (float): Height of the new node.
        Returns:
            int: Index of the new node.
        """
        if self.next_internal >= len(self.parent):
            raise TreeError("No internal nodes left to connect")
        if height < self.heights[left] or height < self.heights[right]:
            raise TreeError(f"Node at height {height} would sit below its \
                              children")
        node = self.next_internal
        self.next_internal += 1
        self.parent[left] = node
        self.parent[right] = node
        self.heights[node] = height
        return node

    def build(self) -> Tree:
        """
        Raises:
            TreeError: If some taxa were never placed or not everything was
                       joined into one tree.
        Returns:
            Tree: The assembled tree.
        """
        if not all(self.used):
            missing = [t for t, u in zip(self.taxa, self.used) if not u]
            raise TreeError(f"Taxa never placed in the tree: {missing}")
        names = self.taxa + [None] * (len(self.parent) - len(self.taxa))
        return Tree(self.parent, self.heights, names)
