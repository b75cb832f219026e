"""
Core API for pixtree working copies.

``Pixtree`` ties the storage pieces together:
- generate(): backend → content store → node → tree refresh → checkout
- import_image(): file → smart tree placement → node → checkout
- checkout() / switch_tree(): move the workspace pointers
- search(), diff(), validate(): read-only views over the stored nodes
"""

import logging
import shutil
from collections import Counter
from pathlib import Path
from typing import Any, Optional

from .config import (
    CONFIG_FILENAME,
    PIXTREE_DIRNAME,
    PixtreeConfig,
    create_default_config,
    find_project_root,
    load_config,
    save_config,
)
from .content_store import ContentStore
from .errors import (
    AlreadyInitializedError,
    BackendFailure,
    InvalidParentError,
    NotEmptyError,
    NotFoundError,
    NotInitializedError,
    PixtreeError,
    StorageIOError,
)
from .exports import EXPORTS_FILENAME, ExportLog, ExportRecord
from .hierarchy import (
    TreeNode,
    ancestors,
    build_forest,
    compute_positions,
    compute_tree_metadata,
    find_orphans,
    sibling_key,
)
from .ids import new_id
from .imaging import probe_image
from .integrity import ValidationResult, validate_project, validate_tree
from .logging_config import configure_ops_log, remove_ops_log
from .providers.base import (
    BLEND_STRATEGIES,
    AnalysisProvider,
    GenerationProvider,
    GenerationRequest,
    PromptBlender,
    fallback_blend,
    get_registry,
)
from .query import SearchQuery, search
from .repository import PROJECT_FILENAME, EntityRepository
from .smart_import import (
    analyze_import_path,
    determine_tree_purpose,
    import_tree_name,
    infer_purpose_note,
    random_tree_name,
    smart_tags,
)
from .types import (
    BlendPreview,
    DiffResult,
    GenerationParams,
    ImageNode,
    ImportInfo,
    IMPORT_METHODS,
    Project,
    ProjectMetadata,
    ProjectSettings,
    ProjectStats,
    StatusInfo,
    Tree,
    TreeStats,
    UserMetadata,
    make_model_config,
    normalize_tags,
    parse_utc_timestamp,
    utc_now,
    validate_purpose,
    validate_rating,
)
from .workspace import CONTEXT_FILENAME, ContextFile, WorkspaceContext

logger = logging.getLogger(__name__)

IMAGES_DIRNAME = "images"
DEFAULT_TREE_NAME = "Main"
MAX_RECOMMENDATIONS = 5
TOP_TAGS = 10
TOP_PROMPTS = 5

GITIGNORE = """\
# Per-user state and logs
context.json
pixtree-ops.log*
pixtree-errors.log
"""


def _tree_stats(nodes: list[ImageNode]) -> TreeStats:
    ratings = [n.rating for n in nodes if n.rating is not None]
    prompts = Counter(n.prompt for n in nodes if n.prompt)
    return TreeStats(
        total_generations=sum(1 for n in nodes if n.source == "generated"),
        total_imports=sum(1 for n in nodes if n.source == "imported"),
        last_activity=max((n.created_at for n in nodes), key=parse_utc_timestamp, default=None),
        avg_rating=round(sum(ratings) / len(ratings), 2) if ratings else 0.0,
        most_used_prompts=[p for p, _ in prompts.most_common(TOP_PROMPTS)],
    )


def _similarity(node1: ImageNode, node2: ImageNode) -> float:
    """Prompt word overlap (0.5), tag overlap (0.3), same model (0.2)."""
    score = 0.0
    if node1.prompt and node2.prompt:
        words1 = node1.prompt.lower().split()
        words2 = node2.prompt.lower().split()
        common = [w for w in words1 if w in set(words2)]
        score += len(common) / max(len(words1), len(words2)) * 0.5
    if node1.tags or node2.tags:
        common_tags = [t for t in node1.tags if t in node2.tags]
        score += len(common_tags) / max(len(node1.tags), len(node2.tags)) * 0.3
    if node1.model == node2.model:
        score += 0.2
    return round(min(score, 1.0), 3)


def _config_diff(node1: ImageNode, node2: ImageNode) -> Optional[dict[str, dict[str, Any]]]:
    if node1.generation is None or node2.generation is None:
        return None
    config1 = node1.generation.model_config.to_dict()
    config2 = node2.generation.model_config.to_dict()
    diff = {
        key: {"node1": config1.get(key), "node2": config2.get(key)}
        for key in sorted(set(config1) | set(config2))
        if config1.get(key) != config2.get(key)
    }
    return diff or None


class Pixtree:
    """
    A pixtree working copy: one project, its trees, nodes, and blobs.

    Example:
        pt = Pixtree("/path/to/art")
        pt.init(name="Posters")
        node = pt.generate("a lighthouse at dusk")
        pt.generate("same lighthouse, in snow")   # child of the first
    """

    def __init__(
        self,
        project_path: Optional[str | Path] = None,
        *,
        config: Optional[PixtreeConfig] = None,
        generators: Optional[dict[str, GenerationProvider]] = None,
        analyzer: Optional[AnalysisProvider] = None,
        blender: Optional[PromptBlender] = None,
    ) -> None:
        """
        Open a working copy (initialized or not).

        Args:
            project_path: Working copy root. Defaults to PIXTREE_PROJECT_PATH,
                then the nearest parent directory holding ``.pixtree``, then cwd.
            config: Pre-loaded config (skips reading pixtree.toml)
            generators: Injected generation backends by model name
            analyzer: Injected analysis backend for imports
            blender: Injected prompt blender
        """
        root = find_project_root(Path(project_path) if project_path is not None else None)
        self._root = root or Path.cwd().resolve()
        self._dir = self._root / PIXTREE_DIRNAME

        if config is None and (self._dir / CONFIG_FILENAME).exists():
            config = load_config(self._dir)
        self._config = config

        recent_limit = config.recent_trees_limit if config else 10
        self._repo = EntityRepository(self._dir)
        self._blobs = ContentStore(self._dir / IMAGES_DIRNAME, self._root)
        self._context_file = ContextFile(self._dir / CONTEXT_FILENAME, recent_limit)
        self._exports = ExportLog(self._dir / EXPORTS_FILENAME)

        self._generators: dict[str, GenerationProvider] = dict(generators or {})
        self._analyzer = analyzer
        self._blender = blender

        # --- Persistent operations log ---
        self._ops_log_handler = configure_ops_log(self._dir) if self._dir.is_dir() else None

    @property
    def root(self) -> Path:
        return self._root

    @property
    def pixtree_dir(self) -> Path:
        return self._dir

    @property
    def error_log_path(self) -> Path:
        return self._dir / "pixtree-errors.log"

    def is_initialized(self) -> bool:
        return (self._dir / PROJECT_FILENAME).exists()

    def _require_project(self) -> Project:
        if not self.is_initialized():
            raise NotInitializedError(self._root)
        return self._repo.load_project()

    # -------------------------------------------------------------------------
    # Providers
    # -------------------------------------------------------------------------

    def _get_generator(self, model: str) -> GenerationProvider:
        """Injected backend, else one created from pixtree.toml."""
        provider = self._generators.get(model)
        if provider is not None:
            return provider

        provider_config = self._config.provider(model) if self._config else None
        if provider_config is not None and not provider_config.enabled:
            raise BackendFailure(model, f"Provider '{model}' is disabled in {CONFIG_FILENAME}")
        params = provider_config.params if provider_config else {}
        try:
            provider = get_registry().create_generator(model, params)
        except (ValueError, RuntimeError) as e:
            raise BackendFailure(model, str(e)) from e
        self._generators[model] = provider
        return provider

    def _get_analyzer(self, project: Project) -> Optional[AnalysisProvider]:
        if self._analyzer is not None:
            return self._analyzer
        provider = self._get_generator(project.settings.default_model)
        return provider if isinstance(provider, AnalysisProvider) else None

    def _get_blender(self, model: str) -> Optional[PromptBlender]:
        if self._blender is not None:
            return self._blender
        provider = self._get_generator(model)
        return provider if isinstance(provider, PromptBlender) else None

    # -------------------------------------------------------------------------
    # Context
    # -------------------------------------------------------------------------

    def context(self) -> WorkspaceContext:
        """The current workspace pointers."""
        self._require_project()
        return self._context_file.load()

    def _save_context(self, context: WorkspaceContext) -> None:
        self._context_file.save(context)

    def _enter(self, context: WorkspaceContext, tree: Tree, node: ImageNode) -> WorkspaceContext:
        """Make a freshly stored node current, switching trees if needed."""
        if context.current_tree_id != tree.id:
            context = context.switch_tree(tree)
        return context.checkout(node)

    # -------------------------------------------------------------------------
    # Project
    # -------------------------------------------------------------------------

    def init(
        self,
        name: Optional[str] = None,
        *,
        description: Optional[str] = None,
        default_model: str = "nano-banana",
        api_key: Optional[str] = None,
        initial_tree: str = DEFAULT_TREE_NAME,
    ) -> Project:
        """
        Create the project, its first tree, and the on-disk layout.

        Raises:
            AlreadyInitializedError: If the working copy already has a project
        """
        if self.is_initialized():
            raise AlreadyInitializedError(self._root)

        self._repo.ensure_layout()
        try:
            self._blobs.directory.mkdir(parents=True, exist_ok=True)
            (self._dir / ".gitignore").write_text(GITIGNORE, encoding="utf-8")
        except OSError as e:
            raise StorageIOError(f"Failed to create {self._dir}: {e}") from e

        self._config = create_default_config(self._dir, default_model=default_model, api_key=api_key)
        save_config(self._config)
        if self._ops_log_handler is None:
            self._ops_log_handler = configure_ops_log(self._dir)

        now = utc_now()
        project = Project(
            id=new_id("project"),
            name=name or self._root.name,
            description=description,
            created_at=now,
            last_accessed=now,
            settings=ProjectSettings(default_model=default_model),
        )
        self._repo.save(project)

        tree = self.create_tree(initial_tree, description="Initial tree", switch=True)
        project.settings.default_tree_on_import = tree.id
        self._repo.save(project)
        project = self._refresh_project()

        logger.info("Initialized project %s (%s) at %s", project.id, project.name, self._root)
        return project

    def project(self) -> Project:
        """Load the project (a user-facing access)."""
        self._require_project()
        return self._repo.load_project(touch=True)

    def update_project(
        self,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
        default_model: Optional[str] = None,
        auto_tagging: Optional[bool] = None,
        auto_analysis: Optional[bool] = None,
        default_tree_on_import: Optional[str] = None,
    ) -> Project:
        project = self._require_project()
        if name is not None:
            if not name.strip():
                raise ValueError("Project name cannot be empty")
            project.name = name.strip()
        if description is not None:
            project.description = description or None
        if default_model is not None:
            project.settings.default_model = default_model
        if auto_tagging is not None:
            project.settings.auto_tagging = auto_tagging
        if auto_analysis is not None:
            project.settings.auto_analysis = auto_analysis
        if default_tree_on_import is not None:
            self._repo.load_tree(default_tree_on_import)
            project.settings.default_tree_on_import = default_tree_on_import
        project.last_accessed = utc_now()
        self._repo.save(project)
        logger.info("Updated project %s", project.id)
        return project

    def _refresh_project(self) -> Project:
        """Recompute project metadata and stats from all trees and nodes."""
        project = self._repo.load_project()
        trees = self._repo.load_all("tree")
        nodes = self._repo.load_all("node")
        ratings = [n.rating for n in nodes if n.rating is not None]
        tag_counts = Counter(tag for n in nodes for tag in n.tags)

        project.metadata = ProjectMetadata(
            total_trees=len(trees),
            total_images=len(nodes),
            total_size=self._blobs.total_size(),
            tags=sorted(tag_counts),
            favorite_count=sum(1 for n in nodes if n.favorite),
            avg_rating=round(sum(ratings) / len(ratings), 2) if ratings else 0.0,
        )
        project.stats = ProjectStats(
            total_generations=sum(1 for n in nodes if n.source == "generated"),
            total_imports=sum(1 for n in nodes if n.source == "imported"),
            last_activity=max((n.created_at for n in nodes), key=parse_utc_timestamp, default=None),
            model_usage=dict(Counter(n.model for n in nodes if n.model)),
            top_tags=dict(tag_counts.most_common(TOP_TAGS)),
        )
        self._repo.save(project)
        return project

    # -------------------------------------------------------------------------
    # Trees
    # -------------------------------------------------------------------------

    def create_tree(
        self,
        name: str,
        *,
        description: Optional[str] = None,
        purpose: str = "creative",
        tags: Optional[list[str]] = None,
        switch: bool = True,
    ) -> Tree:
        """Create a tree; by default it also becomes the current tree."""
        project = self._require_project()
        tree = self._new_tree(project, name, description=description, purpose=purpose, tags=tags)
        return self._add_tree(tree, switch=switch)

    def _new_tree(
        self,
        project: Project,
        name: str,
        *,
        description: Optional[str] = None,
        purpose: str = "creative",
        tags: Optional[list[str]] = None,
    ) -> Tree:
        """Build a tree without saving it."""
        if not name or not name.strip():
            raise ValueError("Tree name cannot be empty")
        now = utc_now()
        return Tree(
            id=new_id("tree"),
            project_id=project.id,
            name=name.strip(),
            description=description,
            purpose=validate_purpose(purpose),
            created_at=now,
            last_accessed=now,
            tags=normalize_tags(tags),
        )

    def _add_tree(self, tree: Tree, *, switch: bool) -> Tree:
        self._repo.save(tree)
        if switch:
            self._save_context(self._context_file.load().switch_tree(tree))
        self._refresh_project()
        logger.info("Created tree %s (%s)", tree.id, tree.name)
        return tree

    def get_tree(self, tree_id: str) -> Tree:
        self._require_project()
        return self._repo.load_tree(tree_id, touch=True)

    def list_trees(self, include_archived: bool = False) -> list[Tree]:
        """Trees, most recently used first."""
        self._require_project()
        trees = [t for t in self._repo.load_all("tree") if include_archived or not t.archived]
        return sorted(trees, key=lambda t: parse_utc_timestamp(t.last_accessed), reverse=True)

    def update_tree(
        self,
        tree_id: str,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
        purpose: Optional[str] = None,
    ) -> Tree:
        self._require_project()
        tree = self._repo.load_tree(tree_id)
        if name is not None:
            if not name.strip():
                raise ValueError("Tree name cannot be empty")
            tree.name = name.strip()
        if description is not None:
            tree.description = description or None
        if purpose is not None:
            tree.purpose = validate_purpose(purpose)
        tree.last_accessed = utc_now()
        self._repo.save(tree)
        logger.info("Updated tree %s", tree_id)
        return tree

    def _set_tree_flag(self, tree_id: str, **flags: bool) -> Tree:
        self._require_project()
        tree = self._repo.load_tree(tree_id)
        for key, value in flags.items():
            setattr(tree, key, value)
        tree.last_accessed = utc_now()
        self._repo.save(tree)
        logger.info("Tree %s: %s", tree_id, ", ".join(f"{k}={v}" for k, v in flags.items()))
        return tree

    def archive_tree(self, tree_id: str) -> Tree:
        return self._set_tree_flag(tree_id, archived=True)

    def unarchive_tree(self, tree_id: str) -> Tree:
        return self._set_tree_flag(tree_id, archived=False)

    def toggle_tree_favorite(self, tree_id: str) -> Tree:
        self._require_project()
        tree = self._repo.load_tree(tree_id)
        return self._set_tree_flag(tree_id, favorite=not tree.favorite)

    def add_tree_tags(self, tree_id: str, tags: list[str]) -> Tree:
        self._require_project()
        tree = self._repo.load_tree(tree_id)
        tree.tags = normalize_tags(tree.tags + list(tags))
        tree.last_accessed = utc_now()
        self._repo.save(tree)
        logger.info("Tagged tree %s: %s", tree_id, ", ".join(tags))
        return tree

    def remove_tree_tags(self, tree_id: str, tags: list[str]) -> Tree:
        self._require_project()
        tree = self._repo.load_tree(tree_id)
        drop = {t.strip() for t in tags}
        tree.tags = [t for t in tree.tags if t not in drop]
        tree.last_accessed = utc_now()
        self._repo.save(tree)
        logger.info("Untagged tree %s: %s", tree_id, ", ".join(tags))
        return tree

    def search_trees(self, tags: list[str]) -> list[Tree]:
        """Trees carrying all of the given tags."""
        self._require_project()
        wanted = normalize_tags(tags)
        return [t for t in self._repo.load_all("tree") if all(tag in t.tags for tag in wanted)]

    def switch_tree(self, tree_id: str) -> Tree:
        """Make a tree current. The current node is cleared."""
        self._require_project()
        tree = self._repo.load_tree(tree_id, touch=True)
        self._save_context(self._context_file.load().switch_tree(tree))
        logger.info("Switched to tree %s", tree_id)
        return tree

    def delete_tree(self, tree_id: str, *, cascade: bool = False) -> int:
        """
        Delete a tree.

        Args:
            tree_id: Tree to delete
            cascade: Also delete the tree's nodes (otherwise a tree with
                nodes is refused)

        Returns:
            Number of nodes deleted

        Raises:
            NotEmptyError: If the tree has nodes and cascade is False
        """
        project = self._require_project()
        self._repo.load_tree(tree_id)
        nodes = self._repo.load_tree_nodes(tree_id)
        if nodes and not cascade:
            raise NotEmptyError(
                f"Tree {tree_id} still has {len(nodes)} node(s); delete them first or use cascade"
            )

        for node in nodes:
            self._repo.delete("node", node.id)
        self._collect_blobs({n.image_hash for n in nodes})
        self._exports.prune_missing_nodes(self._repo.list_ids("node"))
        self._repo.delete("tree", tree_id)

        self._save_context(self._context_file.load().forget_tree(tree_id))
        if project.settings.default_tree_on_import == tree_id:
            project.settings.default_tree_on_import = None
            self._repo.save(project)
        self._refresh_project()
        logger.info("Deleted tree %s (%d nodes)", tree_id, len(nodes))
        return len(nodes)

    def tree_forest(self, tree_id: str) -> list[TreeNode]:
        """The tree's derivation forest (orphans excluded)."""
        self._require_project()
        self._repo.load_tree(tree_id, touch=True)
        return build_forest(self._repo.load_tree_nodes(tree_id))

    def tree_orphans(self, tree_id: str) -> list[ImageNode]:
        self._require_project()
        return find_orphans(self._repo.load_tree_nodes(tree_id))

    def tree_recommendations(self) -> list[tuple[Tree, str]]:
        """Up to five trees worth switching to, with a reason for each."""
        self._require_project()
        context = self._context_file.load()
        trees = {t.id: t for t in self._repo.load_all("tree")}
        current = trees.get(context.current_tree_id) if context.current_tree_id else None
        recommendations: list[tuple[Tree, str]] = []

        def add(tree: Tree, reason: str) -> None:
            if not any(t.id == tree.id for t, _ in recommendations):
                recommendations.append((tree, reason))

        recent = [tid for tid in context.recent_tree_ids if tid in trees and tid != context.current_tree_id]
        if recent:
            add(trees[recent[0]], "Recently accessed")

        if current is not None and current.tags:
            similar = [
                t for t in trees.values()
                if t.id != current.id and not t.archived and set(t.tags) & set(current.tags)
            ][:2]
            for tree in similar:
                shared = [tag for tag in tree.tags if tag in current.tags]
                add(tree, f"Similar tags ({', '.join(shared)})")

        favorites = [
            t for t in trees.values()
            if t.favorite and not t.archived and t.id != context.current_tree_id
        ][:2]
        for tree in favorites:
            add(tree, "Favorite tree")

        return recommendations[:MAX_RECOMMENDATIONS]

    def _refresh_tree(self, tree_id: str) -> Tree:
        """Recompute positions, metadata, stats, and root of one tree."""
        tree = self._repo.load_tree(tree_id)
        nodes = self._repo.load_tree_nodes(tree_id)
        positions = compute_positions(nodes)
        for node in nodes:
            position = positions.get(node.id)
            if position is not None and position != node.position:
                node.position = position
                self._repo.save(node)

        tree.metadata = compute_tree_metadata(nodes)
        tree.stats = _tree_stats(nodes)
        roots = sorted((n for n in nodes if n.parent_id is None), key=sibling_key)
        tree.root_node_id = roots[0].id if roots else None
        self._repo.save(tree)
        return tree

    def repair_tree(self, tree_id: str) -> Tree:
        """
        Recompute a tree's cached metadata and node positions.

        Never re-parents nodes; invalid parents stay reported by validate.
        """
        self._require_project()
        tree = self._refresh_tree(tree_id)
        logger.info("Repaired tree %s (%d nodes)", tree_id, tree.metadata.total_nodes)
        return tree

    # -------------------------------------------------------------------------
    # Nodes
    # -------------------------------------------------------------------------

    def get_node(self, node_id: str) -> ImageNode:
        self._require_project()
        return self._repo.load_node(node_id, touch=True)

    def image_path(self, node_id: str) -> Path:
        """Absolute path of a node's blob."""
        self._require_project()
        return self._blobs.path_for(self._repo.load_node(node_id).image_hash)

    def lineage(self, node_id: str) -> list[ImageNode]:
        """The node's derivation chain, root first, ending with the node."""
        self._require_project()
        node = self._repo.load_node(node_id)
        by_id = {n.id: n for n in self._repo.load_tree_nodes(node.tree_id)}
        return list(reversed(ancestors(node, by_id))) + [node]

    def checkout(self, node_id: str, *, switch: bool = False) -> ImageNode:
        """
        Make a node current.

        Args:
            node_id: Node to check out
            switch: Switch to the node's tree first if it is not current

        Raises:
            NotFoundError: If the node does not exist (context unchanged)
            CrossTreeCheckoutError: If the node is in another tree and
                switch is False
        """
        self._require_project()
        node = self._repo.load_node(node_id)
        context = self._context_file.load()
        if switch and node.tree_id != context.current_tree_id:
            context = context.switch_tree(self._repo.load_tree(node.tree_id, touch=True))
        context = context.checkout(node)
        self._save_context(context)
        node.last_accessed = utc_now()
        self._repo.save(node)
        logger.info("Checked out %s", node_id)
        return node

    def update_node(
        self,
        node_id: str,
        *,
        tags: Optional[list[str]] = None,
        add_tags: Optional[list[str]] = None,
        remove_tags: Optional[list[str]] = None,
        rating: Optional[int] = None,
        clear_rating: bool = False,
        description: Optional[str] = None,
        favorite: Optional[bool] = None,
    ) -> ImageNode:
        """Change user-editable fields. None leaves a field as it is."""
        self._require_project()
        node = self._repo.load_node(node_id)
        if tags is not None:
            node.tags = normalize_tags(tags)
        if add_tags:
            node.tags = normalize_tags(node.tags + list(add_tags))
        if remove_tags:
            drop = {t.strip() for t in remove_tags}
            node.tags = [t for t in node.tags if t not in drop]
        if clear_rating:
            node.user.rating = None
        elif rating is not None:
            node.user.rating = validate_rating(rating)
        if description is not None:
            node.user.description = description or None
        if favorite is not None:
            node.user.favorite = favorite
        node.last_accessed = utc_now()
        self._repo.save(node)
        self._refresh_tree(node.tree_id)
        self._refresh_project()
        logger.info("Updated node %s", node_id)
        return node

    def delete_node(self, node_id: str, *, cascade: bool = False) -> list[str]:
        """
        Delete a node; its blob is removed once no other node references it.

        Args:
            node_id: Node to delete
            cascade: Also delete all descendants (otherwise a node with
                children is refused)

        Returns:
            IDs of the deleted nodes

        Raises:
            NotEmptyError: If the node has children and cascade is False
        """
        self._require_project()
        node = self._repo.load_node(node_id)
        tree_nodes = self._repo.load_tree_nodes(node.tree_id)
        children: dict[str, list[str]] = {}
        for n in tree_nodes:
            if n.parent_id is not None:
                children.setdefault(n.parent_id, []).append(n.id)

        if children.get(node_id) and not cascade:
            raise NotEmptyError(
                f"Node {node_id} has {len(children[node_id])} child node(s); "
                f"delete them first or use cascade"
            )

        doomed: list[str] = []
        stack = [node_id]
        while stack:
            current = stack.pop()
            if current in doomed:
                continue
            doomed.append(current)
            stack.extend(children.get(current, ()))

        by_id = {n.id: n for n in tree_nodes}
        for doomed_id in doomed:
            self._repo.delete("node", doomed_id)
        self._collect_blobs({by_id[d].image_hash for d in doomed})
        self._exports.prune_missing_nodes(self._repo.list_ids("node"))

        context = self._context_file.load()
        if context.current_node_id in doomed:
            self._save_context(context.clear_node())

        self._refresh_tree(node.tree_id)
        self._refresh_project()
        logger.info("Deleted node %s (%d total)", node_id, len(doomed))
        return doomed

    def _collect_blobs(self, hashes: set[str]) -> None:
        """Delete blobs that no remaining node references."""
        if not hashes:
            return
        referenced = {n.image_hash for n in self._repo.load_all("node")}
        for digest in hashes - referenced:
            self._blobs.delete(digest)

    # -------------------------------------------------------------------------
    # Generation and import
    # -------------------------------------------------------------------------

    def _resolve_tree(
        self,
        project: Project,
        context: WorkspaceContext,
        tree_id: Optional[str],
        auto_create_tree: bool,
    ) -> tuple[Tree, bool]:
        """
        The tree a generation lands in, and whether it is new.

        A new tree is built but not saved; the caller saves it once the
        image exists.
        """
        if tree_id is not None:
            return self._repo.load_tree(tree_id), False
        if context.current_tree_id and self._repo.exists("tree", context.current_tree_id):
            return self._repo.load_tree(context.current_tree_id), False
        default = project.settings.default_tree_on_import
        if default and self._repo.exists("tree", default):
            return self._repo.load_tree(default), False
        if not auto_create_tree:
            raise PixtreeError(
                'No tree selected. Run "pixtree tree switch <tree-id>" or pass a tree'
            )
        existing = [t.name for t in self._repo.load_all("tree")]
        return self._new_tree(project, random_tree_name(existing), description="Auto-created tree"), True

    def _resolve_parent(self, tree: Tree, parent_id: Optional[str]) -> Optional[ImageNode]:
        if parent_id is None:
            return None
        if not self._repo.exists("node", parent_id):
            raise InvalidParentError(f"Parent node not found: {parent_id}")
        parent = self._repo.load_node(parent_id)
        if parent.tree_id != tree.id:
            raise InvalidParentError(
                f"Parent {parent_id} belongs to tree {parent.tree_id}, not {tree.id}"
            )
        return parent

    def _store_node(self, node: ImageNode, tree: Tree, context: WorkspaceContext) -> ImageNode:
        """Persist a new node, refresh aggregates, and make it current."""
        self._repo.save(node)
        self._refresh_tree(tree.id)
        self._refresh_project()
        self._save_context(self._enter(context, tree, node))
        return self._repo.load_node(node.id)

    def generate(
        self,
        prompt: str,
        *,
        model: Optional[str] = None,
        tree_id: Optional[str] = None,
        parent_id: Optional[str] = None,
        use_current_as_parent: bool = True,
        negative_prompt: Optional[str] = None,
        params: Optional[dict[str, Any]] = None,
        tags: Optional[list[str]] = None,
        image_to_image: bool = False,
        auto_create_tree: bool = True,
    ) -> ImageNode:
        """
        Generate an image and store it as a new node.

        The target tree is the explicit tree, else the current tree, else the
        project's default import tree, else a newly created tree. The parent
        is the explicit parent, else the current node when it is in the
        target tree. The new node becomes current.

        Args:
            prompt: Text prompt
            model: Backend model name (defaults to the project's default model)
            tree_id: Target tree
            parent_id: Node this one derives from (must be in the target tree)
            use_current_as_parent: Fall back to the current node as parent
            negative_prompt: Things to keep out of the image
            params: Model parameter overrides
            tags: Tags for the new node
            image_to_image: Send the parent's image to the backend
            auto_create_tree: Create a tree when none can be resolved

        Raises:
            BackendFailure: If the backend fails (nothing is stored)
            InvalidParentError: If the parent is missing or in another tree
        """
        if not prompt or not prompt.strip():
            raise ValueError("Prompt cannot be empty")
        project = self._require_project()
        model = model or project.settings.default_model
        model_config = make_model_config(model, prompt, params)
        node_tags = normalize_tags(tags)

        context = self._context_file.load()
        tree, new_tree = self._resolve_tree(project, context, tree_id, auto_create_tree)
        if parent_id is None and use_current_as_parent and context.current_tree_id == tree.id:
            parent_id = context.current_node_id
        parent = self._resolve_parent(tree, parent_id)

        request = GenerationRequest(
            prompt=prompt,
            negative_prompt=negative_prompt,
            params=model_config.as_params(),
            input_images=[self._blobs.get(parent.image_hash)] if image_to_image and parent else [],
        )
        provider = self._get_generator(model)
        logger.debug("Generating with %s in tree %s", model, tree.id)
        try:
            result = provider.generate(request)
        except PixtreeError:
            raise
        except Exception as e:
            raise BackendFailure(model, str(e)) from e

        image_hash, image_path = self._blobs.put(result.image_bytes)
        if new_tree:
            self._add_tree(tree, switch=False)
        now = utc_now()
        node = ImageNode(
            id=new_id("node"),
            project_id=project.id,
            tree_id=tree.id,
            parent_id=parent.id if parent else None,
            image_path=image_path,
            image_hash=image_hash,
            source="generated",
            created_at=now,
            last_accessed=now,
            tags=node_tags,
            model=model,
            generation=GenerationParams(
                prompt=prompt,
                model_config=model_config,
                negative_prompt=negative_prompt,
                derived_from=parent.id if parent else None,
            ),
            file=probe_image(result.image_bytes, generation_time=result.duration_seconds),
        )
        node = self._store_node(node, tree, self._context_file.load())
        logger.info(
            "Generated %s in tree %s (model=%s, parent=%s)",
            node.id, tree.id, model, node.parent_id,
        )
        return node

    def _resolve_import_tree(
        self,
        project: Project,
        context: WorkspaceContext,
        path: str,
        import_method: str,
        purpose: Optional[str],
    ) -> tuple[Tree, bool]:
        """
        Pick the tree an import lands in when none was given.

        Returns the tree and whether it is new (built, not yet saved).
        """
        clues = analyze_import_path(path)

        current = None
        if context.current_tree_id and self._repo.exists("tree", context.current_tree_id):
            current = self._repo.load_tree(context.current_tree_id)
        if current is not None:
            if current.purpose == "reference":
                return current, False
            if clues.is_reference and current.purpose in ("reference", "variation"):
                return current, False
            if import_method == "editing-base" and current.purpose == "creative":
                return current, False

        trees = self._repo.load_all("tree")
        if clues.is_reference:
            references = [t for t in trees if t.purpose == "reference" and not t.archived]
            if references:
                return max(references, key=lambda t: parse_utc_timestamp(t.last_accessed)), False

        default = project.settings.default_tree_on_import
        if default and self._repo.exists("tree", default):
            return self._repo.load_tree(default), False

        tree_purpose = determine_tree_purpose(clues, import_method, purpose)
        tree = self._new_tree(
            project,
            import_tree_name(clues, tree_purpose),
            description=f"Auto-created tree for {tree_purpose} imports",
            purpose=tree_purpose,
            tags=clues.suggested_tags,
        )
        return tree, True

    def import_image(
        self,
        path: str | Path,
        *,
        tree_id: Optional[str] = None,
        parent_id: Optional[str] = None,
        import_method: str = "root",
        description: Optional[str] = None,
        tags: Optional[list[str]] = None,
        purpose: Optional[str] = None,
        analyze: Optional[bool] = None,
    ) -> ImageNode:
        """
        Import an image file as a new node.

        Without an explicit tree the target is chosen from the current
        tree's purpose, clues in the file path, existing reference trees,
        and the project's default import tree; failing all of those a tree
        is created. AI analysis failures are logged and the import proceeds.

        Args:
            path: Image file
            tree_id: Target tree
            parent_id: Parent node (must be in the target tree)
            import_method: "root", "child" (parent defaults to the current
                node), or "editing-base"
            description: User description of the image
            tags: Tags for the new node
            purpose: Purpose for a tree created to hold the import
            analyze: Run AI analysis (defaults to the project setting)
        """
        if import_method not in IMPORT_METHODS:
            raise ValueError(
                f"Unknown import method: {import_method!r} (expected one of {', '.join(IMPORT_METHODS)})"
            )
        if purpose is not None:
            validate_purpose(purpose)
        project = self._require_project()

        source = Path(path).expanduser()
        if not source.is_file():
            raise NotFoundError("file", str(path))
        try:
            data = source.read_bytes()
        except OSError as e:
            raise StorageIOError(f"Failed to read {source}: {e}") from e

        node_tags = normalize_tags(tags)
        context = self._context_file.load()
        if tree_id is not None:
            tree, new_tree = self._repo.load_tree(tree_id), False
        else:
            tree, new_tree = self._resolve_import_tree(project, context, str(source), import_method, purpose)

        if parent_id is None and import_method == "child" and context.current_tree_id == tree.id:
            parent_id = context.current_node_id
        parent = self._resolve_parent(tree, parent_id)

        analysis = None
        if analyze if analyze is not None else project.settings.auto_analysis:
            try:
                analyzer = self._get_analyzer(project)
                if analyzer is None:
                    logger.warning("No analysis backend available; importing without analysis")
                else:
                    analysis = analyzer.analyze(data)
            except Exception as e:
                logger.warning("AI analysis failed for %s: %s", source.name, e)
            if analysis is not None and project.settings.auto_tagging:
                node_tags = normalize_tags(node_tags + smart_tags(analysis, str(source)))

        image_hash, image_path = self._blobs.put(data)
        if new_tree:
            first_tree = not self._repo.list_ids("tree")
            self._add_tree(tree, switch=False)
            if first_tree:
                project = self._repo.load_project()
                project.settings.default_tree_on_import = tree.id
                self._repo.save(project)
        now = utc_now()
        node = ImageNode(
            id=new_id("node"),
            project_id=project.id,
            tree_id=tree.id,
            parent_id=parent.id if parent else None,
            image_path=image_path,
            image_hash=image_hash,
            source="imported",
            created_at=now,
            last_accessed=now,
            tags=node_tags,
            import_info=ImportInfo(
                original_path=str(source.resolve()),
                original_filename=source.name,
                user_description=description,
                import_method=import_method,
                auto_assigned_tree=tree_id is None,
            ),
            user=UserMetadata(description=purpose or infer_purpose_note(str(source))),
            file=probe_image(data),
            ai_analysis=analysis,
        )
        node = self._store_node(node, tree, self._context_file.load())
        logger.info("Imported %s as %s into tree %s", source.name, node.id, tree.id)
        return node

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def search(self, query: Optional[SearchQuery] = None) -> list[ImageNode]:
        """Nodes matching every predicate of the query (all nodes if empty)."""
        self._require_project()
        return search(self._repo.load_all("node"), query or SearchQuery())

    def diff(self, node_id1: str, node_id2: str) -> DiffResult:
        """Compare two nodes."""
        self._require_project()
        node1 = self._repo.load_node(node_id1)
        node2 = self._repo.load_node(node_id2)

        prompt_diff = None
        if node1.prompt and node2.prompt:
            if node1.prompt == node2.prompt:
                prompt_diff = "Identical prompts"
            else:
                prompt_diff = f'"{node1.prompt}" vs "{node2.prompt}"'

        return DiffResult(
            node1=node1,
            node2=node2,
            similarity=_similarity(node1, node2),
            prompt_diff=prompt_diff,
            config_diff=_config_diff(node1, node2),
            same_tree=node1.tree_id == node2.tree_id,
            same_project=node1.project_id == node2.project_id,
        )

    def preview_blend(
        self,
        node_id1: str,
        node_id2: str,
        *,
        strategy: str = "blend",
        weights: Optional[tuple[float, float]] = None,
    ) -> BlendPreview:
        """
        Preview the prompt that blending two nodes would generate from.

        Raises:
            ValueError: If either node has no generation prompt
        """
        project = self._require_project()
        node1 = self._repo.load_node(node_id1)
        node2 = self._repo.load_node(node_id2)
        if not node1.prompt or not node2.prompt:
            raise ValueError("Both nodes must have generation prompts to blend")

        if strategy not in BLEND_STRATEGIES:
            raise ValueError(
                f"Unknown blend strategy: {strategy!r} (expected one of {', '.join(BLEND_STRATEGIES)})"
            )

        model = node1.model or project.settings.default_model
        try:
            blender = self._get_blender(model)
        except BackendFailure as e:
            logger.warning("No prompt blender available (%s); using simple blend", e)
            blender = None

        result = None
        if blender is not None:
            try:
                result = blender.blend(node1.prompt, node2.prompt, strategy, weights)
            except Exception as e:
                logger.warning("Prompt blending failed: %s; using simple blend", e)
        if result is None:
            result = fallback_blend(node1.prompt, node2.prompt)

        context = self._context_file.load()
        return BlendPreview(
            result_prompt=result.blended_prompt,
            explanation=result.explanation,
            expected_changes=result.expected_changes,
            confidence=result.confidence,
            suggested_tree_id=node1.tree_id if node1.tree_id == node2.tree_id else context.current_tree_id,
            suggested_tags=normalize_tags(node1.tags + node2.tags),
        )

    def common_ancestor(self, node_id1: str, node_id2: str) -> Optional[ImageNode]:
        """Nearest node both derive from (a node counts as its own ancestor)."""
        chain1 = self.lineage(node_id1)
        chain2 = self.lineage(node_id2)
        if chain1[-1].tree_id != chain2[-1].tree_id:
            return None
        ids1 = {n.id for n in chain1}
        for node in reversed(chain2):
            if node.id in ids1:
                return node
        return None

    def merge(
        self,
        node_id1: str,
        node_id2: str,
        *,
        strategy: str = "blend",
        weights: Optional[tuple[float, float]] = None,
        custom_prompt: Optional[str] = None,
        tree_id: Optional[str] = None,
    ) -> ImageNode:
        """
        Generate a new node from the blend of two nodes' prompts.

        The result goes under the nodes' common ancestor when they share a
        tree; otherwise it starts a new root in the target tree.
        """
        preview = self.preview_blend(node_id1, node_id2, strategy=strategy, weights=weights)
        node1 = self._repo.load_node(node_id1)
        ancestor = self.common_ancestor(node_id1, node_id2)
        target_tree = tree_id or preview.suggested_tree_id
        parent_id = ancestor.id if ancestor and ancestor.tree_id == target_tree else None
        return self.generate(
            custom_prompt or preview.result_prompt,
            model=node1.model,
            tree_id=target_tree,
            parent_id=parent_id,
            use_current_as_parent=False,
            tags=preview.suggested_tags,
        )

    def export(
        self,
        node_id: str,
        destination: str | Path,
        *,
        custom_name: Optional[str] = None,
        format: Optional[str] = None,
    ) -> ExportRecord:
        """
        Copy a node's image out of the store and record the export.

        A destination that is an existing directory (or ends with a path
        separator) receives ``{custom_name or node_id}.{ext}``.
        """
        self._require_project()
        node = self._repo.load_node(node_id)
        source = self._blobs.path_for(node.image_hash)

        dest = Path(destination).expanduser()
        if dest.is_dir() or str(destination).endswith(("/", "\\")):
            dest = dest / f"{custom_name or node.id}{source.suffix}"
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, dest)
        except OSError as e:
            raise StorageIOError(f"Failed to export to {dest}: {e}") from e

        record = self._exports.record_export(
            node.id, dest.resolve(), format=format or dest.suffix[1:].lower() or node.file.format,
            custom_name=custom_name,
        )
        logger.info("Exported %s to %s", node_id, dest)
        return record

    def export_history(self, node_id: str) -> list[ExportRecord]:
        self._require_project()
        return self._exports.history(node_id)

    def status(self) -> StatusInfo:
        """Project, current position, recent trees, and suggested actions."""
        project = self.project()
        context = self._context_file.load()

        current_tree = None
        if context.current_tree_id and self._repo.exists("tree", context.current_tree_id):
            current_tree = self._repo.load_tree(context.current_tree_id)
        current_node = None
        if context.current_node_id and self._repo.exists("node", context.current_node_id):
            current_node = self._repo.load_node(context.current_node_id)
        recent = [
            self._repo.load_tree(tid) for tid in context.recent_tree_ids
            if self._repo.exists("tree", tid)
        ]
        return StatusInfo(
            project=project,
            current_tree=current_tree,
            current_node=current_node,
            recent_trees=recent,
            suggested_actions=self._suggested_actions(),
        )

    def _suggested_actions(self) -> list[str]:
        trees = self._repo.load_all("tree")
        nodes = self._repo.load_all("node")
        suggestions = []
        if not trees:
            suggestions.append('Create your first tree with: pixtree tree create "My First Tree"')
        if not nodes:
            suggestions.append('Generate your first image with: pixtree generate "your prompt here"')
        if nodes and not any(n.favorite for n in nodes):
            suggestions.append(
                "Mark your best images as favorites with: pixtree node update <node-id> --favorite"
            )
        rated = sum(1 for n in nodes if n.rating is not None)
        if len(nodes) > 5 and rated / len(nodes) < 0.3:
            suggestions.append(
                "Consider rating your images to track quality: pixtree node update <node-id> --rating 1-5"
            )
        if len(trees) > 3 and sum(1 for t in trees if not t.tags) > len(trees) * 0.5:
            suggestions.append(
                "Add tags to your trees for better organization: pixtree tree tag <tree-id> tag1,tag2"
            )
        return suggestions

    def stats(self) -> dict[str, Any]:
        """Project-wide statistics."""
        self._require_project()
        project = self._refresh_project()
        exports = self._exports.all_history()
        return {
            "project": project.name,
            "trees": project.metadata.total_trees,
            "nodes": project.metadata.total_images,
            "generated": project.stats.total_generations,
            "imported": project.stats.total_imports,
            "blobs": len(self._blobs.list_hashes()),
            "storage_bytes": project.metadata.total_size,
            "favorites": project.metadata.favorite_count,
            "avg_rating": project.metadata.avg_rating,
            "model_usage": project.stats.model_usage,
            "top_tags": project.stats.top_tags,
            "exports": sum(len(records) for records in exports.values()),
            "last_activity": project.stats.last_activity,
        }

    def validate_tree(self, tree_id: str) -> ValidationResult:
        self._require_project()
        tree = self._repo.load_tree(tree_id)
        return validate_tree(tree, self._repo.load_all("node"))

    def validate(self) -> dict[str, Any]:
        """
        Check the project and every tree.

        Returns:
            {"project": ValidationResult, "trees": {tree_id: ValidationResult}}
        """
        project = self._require_project()
        trees = self._repo.load_all("tree")
        nodes = self._repo.load_all("node")
        return {
            "project": validate_project(project, trees),
            "trees": {tree.id: validate_tree(tree, nodes) for tree in trees},
        }

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Release the ops log handler."""
        if self._ops_log_handler is not None:
            remove_ops_log(self._ops_log_handler)
            self._ops_log_handler = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
