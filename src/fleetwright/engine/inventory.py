"""
Fleetwright Inventory

Hosts and groups forming a DAG, with per-host/per-group variables.
The engine consumes an already-loaded inventory; ``Inventory.from_dict``
builds one from a parsed mapping in the common ``all: {hosts, vars,
children}`` shape.
"""

import fnmatch
from collections import deque
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

from fleetwright.engine.blend import blend_into
from fleetwright.engine.errors import InventoryError

ALL_GROUP = 'all'


class Host:
    """Represents a single host in the inventory."""

    def __init__(self, name: str, variables: Optional[Dict[str, Any]] = None):
        self.name = name
        self.vars: Dict[str, Any] = dict(variables) if variables else {}
        # Discovered at runtime, appended to, never removed
        self.facts: Dict[str, Any] = {}
        # Written by ``set`` tasks
        self.runtime_vars: Dict[str, Any] = {}
        self._groups: Set[str] = set()

    @property
    def connection(self) -> Optional[str]:
        """Get the connection type (local, ssh) if set on the host."""
        return self.vars.get('connection')

    @property
    def ssh_hostname(self) -> str:
        """Get the address to connect to (ssh_hostname or name)."""
        return self.vars.get('ssh_hostname', self.name)

    @property
    def ssh_port(self) -> int:
        return int(self.vars.get('ssh_port', 22))

    @property
    def ssh_user(self) -> Optional[str]:
        return self.vars.get('ssh_user')

    @property
    def groups(self) -> List[str]:
        """Return sorted names of the groups this host belongs to directly."""
        return sorted(self._groups)

    def add_group(self, group_name: str) -> None:
        self._groups.add(group_name)

    def get_variable(self, key: str, default: Any = None) -> Any:
        return self.vars.get(key, default)

    def update_facts(self, facts: Mapping[str, Any]) -> None:
        """Blend newly gathered facts over the existing ones."""
        blend_into(self.facts, facts)

    def update_runtime_vars(self, variables: Mapping[str, Any]) -> None:
        blend_into(self.runtime_vars, variables)

    def __repr__(self) -> str:
        return f"Host({self.name!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Host):
            return NotImplemented
        return self.name == other.name

    def __hash__(self) -> int:
        return hash(self.name)


class Group:
    """Represents a group of hosts."""

    def __init__(self, name: str, variables: Optional[Dict[str, Any]] = None):
        self.name = name
        self.vars: Dict[str, Any] = dict(variables) if variables else {}
        self._hosts: Set[str] = set()
        self._children: Set[str] = set()
        self._parents: Set[str] = set()

    @property
    def hosts(self) -> List[str]:
        """Return names of hosts directly in this group."""
        return sorted(self._hosts)

    @property
    def children(self) -> List[str]:
        return sorted(self._children)

    @property
    def parents(self) -> List[str]:
        return sorted(self._parents)

    def add_host(self, host_name: str) -> None:
        self._hosts.add(host_name)

    def add_child(self, group_name: str) -> None:
        self._children.add(group_name)

    def add_parent(self, group_name: str) -> None:
        self._parents.add(group_name)

    def __repr__(self) -> str:
        return f"Group({self.name!r}, hosts={len(self._hosts)})"


class Inventory:
    """
    Hosts and groups with variable precedence derived from ancestry.

    Group variable precedence is a total order: farther ancestors lose to
    nearer ones, ``all`` is always the farthest, ties are broken by group
    name. Host variables beat every group.
    """

    def __init__(self):
        self.hosts: Dict[str, Host] = {}
        self.groups: Dict[str, Group] = {ALL_GROUP: Group(ALL_GROUP)}

    # -- construction -----------------------------------------------------

    def add_group(
        self,
        name: str,
        variables: Optional[Dict[str, Any]] = None,
        parents: Iterable[str] = (),
    ) -> Group:
        """
        Add (or update) a group.

        Args:
            name: Group name
            variables: Variables to blend into the group's mapping
            parents: Names of parent groups (created if missing)

        Returns:
            The Group object
        """
        group = self.groups.get(name)
        if group is None:
            group = self.groups[name] = Group(name)
        if variables:
            blend_into(group.vars, variables)
        for parent in parents:
            self.add_child_group(parent, name)
        return group

    def add_child_group(self, parent: str, child: str) -> None:
        """
        Record ``child`` as a subgroup of ``parent``.

        Raises:
            InventoryError: If the edge would introduce a cycle
        """
        if parent == child:
            raise InventoryError(f"Group '{child}' cannot be its own parent")
        if child == ALL_GROUP:
            raise InventoryError(f"Group '{ALL_GROUP}' cannot have parents")
        if parent not in self.groups:
            self.add_group(parent)
        if child not in self.groups:
            self.add_group(child)
        if child in self._group_ancestors(parent):
            raise InventoryError(
                f"Adding '{child}' under '{parent}' would create a group cycle"
            )
        self.groups[parent].add_child(child)
        self.groups[child].add_parent(parent)

    def add_host(
        self,
        name: str,
        variables: Optional[Dict[str, Any]] = None,
        groups: Iterable[str] = (),
    ) -> Host:
        """
        Add (or update) a host and its group memberships.

        Args:
            name: Host name
            variables: Variables to blend into the host's mapping
            groups: Names of groups the host belongs to (created if missing)

        Returns:
            The Host object
        """
        host = self.hosts.get(name)
        if host is None:
            host = self.hosts[name] = Host(name)
            self.groups[ALL_GROUP].add_host(name)
        if variables:
            blend_into(host.vars, variables)
        for group_name in groups:
            group = self.add_group(group_name)
            group.add_host(name)
            host.add_group(group_name)
        return host

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'Inventory':
        """
        Build an inventory from a parsed mapping.

        Example:
            {'all': {'vars': {...},
                     'children': {'web': {'vars': {'port': 80},
                                          'hosts': {'h1': {'port': 8080}}}}}}

        Args:
            data: Mapping keyed by top-level group names

        Returns:
            A populated Inventory
        """
        if not isinstance(data, Mapping):
            raise InventoryError("Inventory data must be a mapping")

        inventory = cls()
        for group_name, body in data.items():
            inventory._load_group(group_name, body or {}, parent=None)
        return inventory

    def _load_group(self, name: str, body: Mapping[str, Any], parent: Optional[str]) -> None:
        if not isinstance(body, Mapping):
            raise InventoryError(f"Group '{name}' must be a mapping")

        unknown = set(body) - {'hosts', 'vars', 'children'}
        if unknown:
            raise InventoryError(
                f"Group '{name}' has unknown keys: {', '.join(sorted(unknown))}"
            )

        self.add_group(name, body.get('vars') or {})
        if parent is not None and parent != ALL_GROUP:
            self.add_child_group(parent, name)

        hosts = body.get('hosts') or {}
        if isinstance(hosts, (list, tuple)):
            hosts = {h: {} for h in hosts}
        for host_name, host_vars in hosts.items():
            groups = [] if name == ALL_GROUP else [name]
            self.add_host(host_name, host_vars or {}, groups=groups)

        for child_name, child_body in (body.get('children') or {}).items():
            self._load_group(child_name, child_body or {}, parent=name)

    # -- queries ----------------------------------------------------------

    def get_host(self, name: str) -> Host:
        try:
            return self.hosts[name]
        except KeyError:
            raise InventoryError(f"Unknown host: {name}")

    def has_host(self, name: str) -> bool:
        return name in self.hosts

    def _group_ancestors(self, group_name: str) -> Set[str]:
        seen: Set[str] = set()
        pending = list(self.groups[group_name].parents) if group_name in self.groups else []
        while pending:
            name = pending.pop()
            if name in seen:
                continue
            seen.add(name)
            pending.extend(self.groups[name].parents)
        return seen

    def ancestor_distances(self, host_name: str) -> Dict[str, int]:
        """
        Shortest membership distance from a host to each ancestor group.

        Direct groups are at distance 1, their parents at 2, and so on.
        ``all`` is placed one step beyond the farthest group.
        """
        host = self.get_host(host_name)
        distances: Dict[str, int] = {}
        queue = deque((name, 1) for name in host.groups if name != ALL_GROUP)
        while queue:
            name, distance = queue.popleft()
            if name in distances:
                continue
            distances[name] = distance
            for parent in self.groups[name].parents:
                if parent not in distances:
                    queue.append((parent, distance + 1))
        distances[ALL_GROUP] = max(distances.values(), default=0) + 1
        return distances

    def group_names(self, host_name: str) -> List[str]:
        """Names of every ancestor group of a host, excluding ``all``."""
        return sorted(n for n in self.ancestor_distances(host_name) if n != ALL_GROUP)

    def group_layers(self, host_name: str) -> List[Dict[str, Any]]:
        """
        Group variable mappings for a host, lowest precedence first.

        Returns:
            Mappings ordered from most distant ancestor to nearest
        """
        distances = self.ancestor_distances(host_name)
        ordered = sorted(distances, key=lambda n: (-distances[n], n))
        return [self.groups[name].vars for name in ordered]

    def group_hosts(self, group_name: str) -> Set[str]:
        """Names of hosts in a group or any of its descendants."""
        if group_name not in self.groups:
            return set()
        result: Set[str] = set()
        seen: Set[str] = set()
        pending = [group_name]
        while pending:
            name = pending.pop()
            if name in seen:
                continue
            seen.add(name)
            group = self.groups[name]
            result.update(group.hosts)
            pending.extend(group.children)
        return result

    def select(self, pattern: str = ALL_GROUP) -> List[Host]:
        """
        Get hosts matching a selector.

        Supported patterns:
        - "all" or "*" - all hosts
        - "group_name" - all hosts in a group (including child groups)
        - "host_name" - single host
        - "web*" - shell-style wildcard over host and group names
        - "a,b" - union
        - "!group" - exclusion
        - "a:&b" - intersection

        Args:
            pattern: Host selector string

        Returns:
            Matching hosts sorted by name
        """
        return [self.hosts[name] for name in sorted(self._select_names(pattern))]

    def _select_names(self, pattern: str) -> Set[str]:
        pattern = (pattern or ALL_GROUP).strip()

        if pattern in (ALL_GROUP, '*'):
            return set(self.hosts)

        if ',' in pattern:
            included: Set[str] = set()
            excluded: Set[str] = set()
            for sub in (p.strip() for p in pattern.split(',')):
                if not sub:
                    continue
                if sub.startswith('!'):
                    excluded |= self._select_names(sub[1:])
                else:
                    included |= self._select_names(sub)
            if excluded and not included:
                included = set(self.hosts)
            return included - excluded

        if pattern.startswith('!'):
            return set(self.hosts) - self._select_names(pattern[1:])

        if ':&' in pattern:
            left, right = pattern.split(':&', 1)
            return self._select_names(left) & self._select_names(right)

        if pattern in self.groups:
            return self.group_hosts(pattern)

        if pattern in self.hosts:
            return {pattern}

        if any(ch in pattern for ch in '*?['):
            names = {h for h in self.hosts if fnmatch.fnmatchcase(h, pattern)}
            for group_name in self.groups:
                if fnmatch.fnmatchcase(group_name, pattern):
                    names |= self.group_hosts(group_name)
            return names

        return set()
