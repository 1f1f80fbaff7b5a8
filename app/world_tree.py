"""
app/world_tree.py — Parent/child rules for world elements

World elements nest (continent > region > city > tavern) through a nullable
parent_id. The database only checks that the parent exists, so everything
else is checked here, at the moment a parent is assigned:

  - an element can't be its own parent, directly or through its ancestors
  - a parent must belong to the same campaign
  - a chain can't be deeper than MAX_WORLD_DEPTH

The checks see objects that are still pending in the session, so a whole
tree can be built and validated before the first flush.

Traversal never walks child collections. build_tree() indexes a flat list of
elements by id and works out children by lookup.
"""

from collections import defaultdict

from sqlalchemy import inspect

from app import db

# Deepest allowed chain, counting the element itself
MAX_WORLD_DEPTH = 32


class WorldTreeError(ValueError):
    """Raised when a parent assignment would break the world tree."""
    pass


def _lookup(element_id):
    """Find a world element by id, including ones not flushed yet."""
    from app.models import WorldElement
    for obj in db.session.new:
        if isinstance(obj, WorldElement) and obj.id == element_id:
            return obj
    with db.session.no_autoflush:
        return db.session.get(WorldElement, element_id)


def _parent_of(element):
    """The element's parent object. A parent assigned but not flushed yet wins
    over the (then stale) parent_id column."""
    added = inspect(element).attrs.parent.history.added
    if added:
        return added[0]
    if element.parent_id is None:
        return None
    return _lookup(element.parent_id)


def _campaign_id_of(element):
    if element.campaign_id is not None:
        return element.campaign_id
    campaign = element.__dict__.get('campaign')
    return campaign.id if campaign is not None else None


def iter_ancestors(element):
    """Yield the parent, grandparent... of ``element``, stopping at the root.
    Raises WorldTreeError on a loop so a corrupt chain can't spin forever."""
    seen = {element.id}
    node = _parent_of(element)
    while node is not None:
        if node.id in seen:
            raise WorldTreeError(f'World element {node.id} is part of a cycle')
        seen.add(node.id)
        yield node
        node = _parent_of(node)


def _children_of(node):
    """Elements whose current parent is ``node``: rows in the database plus
    anything pending or reparented in the session. Elements outside any
    session can't have children the session knows about."""
    from app.models import WorldElement
    session = inspect(node).session
    if session is None:
        return []
    candidates = {}
    with session.no_autoflush:
        if inspect(node).persistent:
            for child in session.query(WorldElement).filter(WorldElement.parent_id == node.id):
                candidates[child.id] = child
        for obj in list(session.new) + list(session.dirty):
            if isinstance(obj, WorldElement):
                candidates.setdefault(obj.id, obj)
        children = []
        for child in candidates.values():
            parent = _parent_of(child)
            if child is not node and parent is not None and parent.id == node.id:
                children.append(child)
    return children


def _subtree_height(element, limit):
    """Levels below ``element`` (0 for a leaf). Stops counting past ``limit``."""
    height = 0
    level = [element]
    seen = {element.id}
    while level and height <= limit:
        below = []
        for node in level:
            for child in _children_of(node):
                if child.id not in seen:
                    seen.add(child.id)
                    below.append(child)
        if below:
            height += 1
        level = below
    return height


def check_parent(element, parent):
    """Raise WorldTreeError if ``parent`` can't become the parent of ``element``.

    The depth counted is the whole chain after the move: the parent's
    ancestors, the parent, the element and everything already below it.
    """
    if parent is None:
        return
    if parent.id == element.id:
        raise WorldTreeError('A world element cannot be its own parent')

    element_campaign = _campaign_id_of(element)
    parent_campaign = _campaign_id_of(parent)
    if element_campaign is not None and parent_campaign is not None \
            and element_campaign != parent_campaign:
        raise WorldTreeError('Parent world element belongs to a different campaign')

    depth = 2   # element + parent
    for ancestor in iter_ancestors(parent):
        if ancestor.id == element.id:
            raise WorldTreeError(
                f'Making "{parent.name}" the parent of "{element.name}" would create a cycle')
        depth += 1
        if depth > MAX_WORLD_DEPTH:
            raise WorldTreeError(f'World tree is limited to {MAX_WORLD_DEPTH} levels')

    depth += _subtree_height(element, MAX_WORLD_DEPTH - depth)
    if depth > MAX_WORLD_DEPTH:
        raise WorldTreeError(f'World tree is limited to {MAX_WORLD_DEPTH} levels')


def check_parent_id(element, parent_id):
    if parent_id is None:
        return
    if parent_id == element.id:
        raise WorldTreeError('A world element cannot be its own parent')
    parent = _lookup(parent_id)
    if parent is None:
        raise WorldTreeError(f'Parent world element {parent_id} does not exist')
    check_parent(element, parent)


class WorldTree:
    """Arena view of a set of world elements: everything is an id lookup."""

    def __init__(self, elements):
        self.by_id = {el.id: el for el in elements}
        self.children = defaultdict(list)
        self.roots = []
        for el in elements:
            # An element whose parent isn't in the set is treated as a root
            if el.parent_id is not None and el.parent_id in self.by_id:
                self.children[el.parent_id].append(el.id)
            else:
                self.roots.append(el.id)

    def children_of(self, element_id):
        return [self.by_id[i] for i in self.children.get(element_id, [])]

    def descendants_of(self, element_id):
        result = []
        stack = list(reversed(self.children.get(element_id, [])))
        while stack:
            current = stack.pop()
            result.append(self.by_id[current])
            stack.extend(reversed(self.children.get(current, [])))
        return result

    def path_to(self, element_id):
        """Root-first list of elements leading to ``element_id``."""
        path = []
        current = self.by_id.get(element_id)
        while current is not None:
            path.append(current)
            if len(path) > len(self.by_id):
                raise WorldTreeError(f'World element {element_id} is part of a cycle')
            current = self.by_id.get(current.parent_id)
        return list(reversed(path))


def build_tree(campaign_id, include_secret=True):
    """Load the active world elements of a campaign into a WorldTree."""
    from app.models import WorldElement
    query = WorldElement.active().filter(WorldElement.campaign_id == campaign_id)
    if not include_secret:
        query = query.filter(WorldElement.is_secret.is_(False))
    return WorldTree(query.order_by(WorldElement.name).all())
