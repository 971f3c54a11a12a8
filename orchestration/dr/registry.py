"""Node registry: the immutable catalogue of primary and backup nodes."""
from __future__ import annotations

from types import MappingProxyType

from .config import DRConfig, NodeConfig
from .errors import InvalidTransitionError, NotFoundError
from .models import PRIMARY_NODE_ID, Node, NodeRole


def _node(cfg: NodeConfig, role: NodeRole) -> Node:
    return Node(
        id=cfg.id,
        role=role,
        region=cfg.region,
        url=cfg.url,
        base_latency_ms=cfg.base_latency_ms,
        baseline_uptime_percent=cfg.uptime_percent,
        baseline_requests_per_minute=cfg.requests_per_minute,
    )


class NodeRegistry:
    def __init__(self, primary: Node, backups: tuple[Node, ...]) -> None:
        self._primary = primary
        self._backups = tuple(backups)
        by_id = {primary.id: primary}
        for node in self._backups:
            by_id[node.id] = node
        self._by_id = MappingProxyType(by_id)

    @classmethod
    def from_config(cls, config: DRConfig) -> NodeRegistry:
        return cls(
            primary=_node(config.primary, NodeRole.PRIMARY),
            backups=tuple(_node(b, NodeRole.BACKUP) for b in config.backups),
        )

    @property
    def primary(self) -> Node:
        return self._primary

    def backups(self) -> tuple[Node, ...]:
        return self._backups

    def nodes(self) -> tuple[Node, ...]:
        return (self._primary,) + self._backups

    def node_ids(self) -> tuple[str, ...]:
        return tuple(self._by_id)

    def get(self, node_id: str) -> Node:
        try:
            return self._by_id[node_id]
        except KeyError:
            raise NotFoundError(f"unknown node {node_id!r}") from None

    def get_backup(self, node_id: str) -> Node:
        node = self.get(node_id)
        if node.id == PRIMARY_NODE_ID:
            raise InvalidTransitionError("the primary node is not a failover target")
        return node

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._by_id

    def __len__(self) -> int:
        return len(self._by_id)
