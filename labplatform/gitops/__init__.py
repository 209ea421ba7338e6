from .store import ConfigStore, NodeDocument, RepoTarget, node_name, node_path

__all__ = ["ConfigStore", "NodeDocument", "RepoTarget", "node_name", "node_path"]
