"""
Dependency Resolver
Builds a flat, deduplicated install plan for a catalog entry
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from errors import CatalogEntryNotFound
from slug_matcher import SlugMatcher

logger = logging.getLogger(__name__)


class Classification(Enum):
    RESOLVED = 'resolved'
    ALREADY_INSTALLED = 'already_installed'
    UNRESOLVED = 'unresolved'


@dataclass
class DependencyPlanNode:
    slug: str
    classification: Classification
    depth: int
    entry: Optional[object] = None
    requires: List[str] = field(default_factory=list)

    @property
    def name(self):
        return self.entry.name if self.entry is not None else self.slug

    @property
    def version(self):
        return self.entry.version_label() if self.entry is not None else None


@dataclass
class DependencyResult:
    root_slug: str
    resolved: List[DependencyPlanNode] = field(default_factory=list)
    already_installed: List[str] = field(default_factory=list)
    unresolved: List[str] = field(default_factory=list)
    optional: List[str] = field(default_factory=list)
    cycles: List[str] = field(default_factory=list)
    nodes: List[DependencyPlanNode] = field(default_factory=list)

    def has_dependencies(self):
        return bool(self.resolved)

    def has_unresolved(self):
        return bool(self.unresolved)

    def to_dict(self):
        return {
            'root_slug': self.root_slug,
            'resolved': [
                {'slug': node.slug, 'name': node.name, 'version': node.version, 'depth': node.depth}
                for node in self.resolved
            ],
            'already_installed': list(self.already_installed),
            'unresolved': list(self.unresolved),
            'optional': list(self.optional),
            'cycles': list(self.cycles),
        }


def install_order(nodes):
    """Order resolved nodes deepest first, never ahead of their own prerequisites.

    Args:
        nodes: list - DependencyPlanNode objects classified RESOLVED

    Returns:
        list - Nodes in the order they should be installed
    """
    pending = sorted(nodes, key=lambda node: -node.depth)
    keys = {node.slug for node in pending}
    done = set()
    ordered = []
    while pending:
        for index, node in enumerate(pending):
            if all(dep in done or dep not in keys for dep in node.requires):
                break
        else:
            # only reachable through a cycle; fall back to depth order
            index = 0
        node = pending.pop(index)
        done.add(node.slug)
        ordered.append(node)
    return ordered


class _Traversal:
    def __init__(self, root, catalog, installed, matcher):
        self.root = root
        self.catalog = catalog
        self.installed = list(installed)
        self.matcher = matcher
        self.visiting = {root.slug}
        self.nodes = {}
        self.order = []
        self.cycles = []

    def visit_all(self, slugs, depth, parent=None):
        for slug in slugs:
            key = self.visit(slug, depth)
            if parent is not None and key is not None and key not in parent.requires:
                parent.requires.append(key)

    def visit(self, slug, depth):
        entry = self.catalog.find(slug)
        key = entry.slug if entry is not None else slug

        if key == self.root.slug or key in self.visiting:
            if key not in self.cycles:
                logger.warning("Dependency cycle broken at %s while resolving %s", key, self.root.slug)
                self.cycles.append(key)
            return key if key != self.root.slug else None

        existing = self.nodes.get(key)
        if existing is not None:
            if depth < existing.depth:
                self._relax(existing, depth)
            return key

        if entry is not None:
            record = self.matcher.find_installed(entry, self.installed)
        else:
            record = self.matcher.find_installed_slug(slug, self.installed)

        if record is not None:
            node = DependencyPlanNode(key, Classification.ALREADY_INSTALLED, depth, entry)
            self._add(node)
            return key

        if entry is None:
            logger.debug("Dependency %s of %s is not in the catalog", slug, self.root.slug)
            self._add(DependencyPlanNode(key, Classification.UNRESOLVED, depth))
            return key

        node = DependencyPlanNode(key, Classification.RESOLVED, depth, entry)
        self._add(node)
        self.visiting.add(key)
        try:
            self.visit_all(entry.required_dependency_slugs, depth + 1, parent=node)
        finally:
            self.visiting.discard(key)
        return key

    def _relax(self, node, depth):
        """Lower a node to depth and pull its already-expanded dependencies up with it."""
        node.depth = depth
        for child_slug in node.requires:
            child = self.nodes.get(child_slug)
            # depths only decrease, so cycles stop here
            if child is not None and child.depth > depth + 1:
                self._relax(child, depth + 1)

    def _add(self, node):
        self.nodes[node.slug] = node
        self.order.append(node)


class DependencyResolver:
    def __init__(self, matcher=None):
        self.matcher = matcher or SlugMatcher()

    def resolve(self, root_slug, catalog, installed):
        """Resolve the required dependencies of a catalog entry.

        Args:
            root_slug: str - Slug of the addon the user wants
            catalog: CatalogSnapshot - Catalog to look dependencies up in
            installed: iterable - InstalledRecord snapshot

        Returns:
            DependencyResult - resolved nodes are in install order

        Raises:
            CatalogEntryNotFound - root_slug is not in the catalog
        """
        root = catalog.find(root_slug)
        if root is None:
            raise CatalogEntryNotFound(root_slug)

        traversal = _Traversal(root, catalog, installed, self.matcher)
        traversal.visit_all(root.required_dependency_slugs, 0)

        result = DependencyResult(root_slug=root.slug, cycles=list(traversal.cycles))
        resolved = []
        for node in traversal.order:
            if node.classification is Classification.RESOLVED:
                resolved.append(node)
            elif node.classification is Classification.ALREADY_INSTALLED:
                result.already_installed.append(node.slug)
            else:
                result.unresolved.append(node.slug)
        result.resolved = install_order(resolved)
        result.nodes = list(traversal.order)
        result.optional = self._optional_slugs(root, resolved, traversal)
        return result

    def _optional_slugs(self, root, resolved, traversal):
        """Optional dependencies worth offering: not planned and not installed."""
        optional = []
        for entry in [root] + [node.entry for node in resolved]:
            for slug in entry.optional_dependency_slugs:
                found = traversal.catalog.find(slug)
                key = found.slug if found is not None else slug
                if key in traversal.nodes or key == root.slug or key in optional:
                    continue
                if found is not None:
                    installed = self.matcher.find_installed(found, traversal.installed)
                else:
                    installed = self.matcher.find_installed_slug(slug, traversal.installed)
                if installed is None:
                    optional.append(key)
        return optional
