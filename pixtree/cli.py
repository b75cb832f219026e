"""
CLI interface for pixtree.

Usage:
    pixtree init --name "Posters"
    pixtree generate "a lighthouse at dusk"
    pixtree import ~/refs/mood.png
    pixtree tree view
"""

import json
import os
import sys
from dataclasses import is_dataclass
from pathlib import Path
from typing import Any, Optional

import typer
from typing_extensions import Annotated

from .api import Pixtree
from .errors import PixtreeError, log_exception
from .hierarchy import walk
from .logging_config import configure_quiet_mode, enable_debug_mode
from .query import SearchQuery, parse_date_param
from .types import ImageNode, Tree, local_date

# Configure quiet mode by default (suppress verbose library output)
# Set PIXTREE_VERBOSE=1 to enable debug mode via environment
if os.environ.get("PIXTREE_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_json_output = False
_project_override: Optional[Path] = None


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _get_json_output() -> bool:
    return _json_output


def _project_callback(value: Optional[Path]):
    global _project_override
    _project_override = value


app = typer.Typer(
    name="pixtree",
    help="Versioned image artifact store with derivation trees.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


# -----------------------------------------------------------------------------
# Output Formatting
# -----------------------------------------------------------------------------

def _to_jsonable(obj: Any) -> Any:
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if is_dataclass(obj):
        return {k: _to_jsonable(getattr(obj, k)) for k in obj.__dataclass_fields__}
    if isinstance(obj, dict):
        return {k: _to_jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_to_jsonable(v) for v in obj]
    if isinstance(obj, Path):
        return str(obj)
    return obj


def _echo_json(obj: Any) -> None:
    typer.echo(json.dumps(_to_jsonable(obj), indent=2, ensure_ascii=False))


def _node_label(node: ImageNode) -> str:
    if node.prompt:
        return node.prompt
    if node.import_info is not None:
        return node.import_info.original_filename
    return ""


def _format_node_line(node: ImageNode, width: int = 60) -> str:
    """One-line node summary: id date [*] [rating] label"""
    parts = [node.id, local_date(node.created_at)]
    if node.favorite:
        parts.append("*")
    if node.rating is not None:
        parts.append(f"[{node.rating}/5]")
    label = _node_label(node)
    if len(label) > width:
        label = label[:width - 3] + "..."
    parts.append(label)
    return "  ".join(p for p in parts if p)


def _format_tree_line(tree: Tree, current_id: Optional[str] = None) -> str:
    marker = "*" if tree.id == current_id else " "
    flags = []
    if tree.favorite:
        flags.append("favorite")
    if tree.archived:
        flags.append("archived")
    suffix = f" ({', '.join(flags)})" if flags else ""
    tags = f"  [{', '.join(tree.tags)}]" if tree.tags else ""
    return (
        f"{marker} {tree.id}  {tree.name}{suffix}  "
        f"{tree.metadata.total_nodes} nodes, {tree.purpose}{tags}"
    )


def _format_node_detail(node: ImageNode) -> str:
    lines = [
        f"id: {node.id}",
        f"tree: {node.tree_id}",
        f"parent: {node.parent_id or '-'}",
        f"source: {node.source}",
        f"created: {node.created_at}",
        f"image: {node.image_path}",
        f"file: {node.file.width}x{node.file.height} {node.file.format}, {node.file.size} bytes",
    ]
    if node.model:
        lines.append(f"model: {node.model}")
    if node.generation is not None:
        lines.append(f"prompt: {node.generation.prompt}")
        if node.generation.negative_prompt:
            lines.append(f"negative: {node.generation.negative_prompt}")
    if node.import_info is not None:
        lines.append(f"imported from: {node.import_info.original_path} ({node.import_info.import_method})")
        if node.import_info.user_description:
            lines.append(f"note: {node.import_info.user_description}")
    if node.tags:
        lines.append(f"tags: {', '.join(node.tags)}")
    if node.rating is not None:
        lines.append(f"rating: {node.rating}/5")
    if node.favorite:
        lines.append("favorite: yes")
    if node.user.description:
        lines.append(f"description: {node.user.description}")
    if node.ai_analysis is not None:
        lines.append(f"analysis: {node.ai_analysis.description}")
    return "\n".join(lines)


def _split_tags(values: Optional[list[str]]) -> list[str]:
    """Accept repeated options and comma-separated lists."""
    tags: list[str] = []
    for value in values or []:
        tags.extend(t.strip() for t in value.split(",") if t.strip())
    return tags


def _parse_params(values: Optional[list[str]]) -> dict[str, Any]:
    """Parse key=value model parameters; values are read as JSON when possible."""
    params: dict[str, Any] = {}
    for item in values or []:
        if "=" not in item:
            typer.echo(f"Error: Invalid parameter '{item}'. Use key=value", err=True)
            raise typer.Exit(1)
        key, raw = item.split("=", 1)
        try:
            params[key.strip()] = json.loads(raw)
        except json.JSONDecodeError:
            params[key.strip()] = raw
    return params


# -----------------------------------------------------------------------------
# Error Handling
# -----------------------------------------------------------------------------

def _get_pixtree() -> Pixtree:
    """Open the working copy, exiting cleanly on bad configuration."""
    import atexit

    try:
        pt = Pixtree(_project_override)
    except (PixtreeError, ValueError, OSError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    atexit.register(pt.close)
    return pt


def _fail(e: Exception, pt: Optional[Pixtree], command: str):
    """Report an error on one line, log the traceback, and exit 1."""
    log_path = pt.error_log_path if pt is not None and pt.pixtree_dir.is_dir() else None
    log_exception(e, context=f"pixtree {command}", log_path=log_path)
    typer.echo(f"Error: {e}", err=True)
    raise typer.Exit(1)


# -----------------------------------------------------------------------------
# Global Options
# -----------------------------------------------------------------------------

@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
        callback=_json_callback,
        is_eager=True,
    )] = False,
    project: Annotated[Optional[Path], typer.Option(
        "--project", "-p",
        envvar="PIXTREE_PROJECT_PATH",
        help="Project directory (default: nearest parent with .pixtree/)",
        callback=_project_callback,
        is_eager=True,
    )] = None,
):
    """Versioned image artifact store with derivation trees."""


# -----------------------------------------------------------------------------
# Common Options
# -----------------------------------------------------------------------------

TagOption = Annotated[
    Optional[list[str]],
    typer.Option(
        "--tag", "-t",
        help="Tag (repeatable, or comma-separated)"
    )
]

TreeOption = Annotated[
    Optional[str],
    typer.Option(
        "--tree",
        help="Target tree ID (default: current tree)"
    )
]


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

@app.command()
def init(
    name: Annotated[Optional[str], typer.Option(
        "--name", "-n",
        help="Project name (default: directory name)"
    )] = None,
    description: Annotated[Optional[str], typer.Option(
        "--description", "-d",
        help="Project description"
    )] = None,
    model: Annotated[str, typer.Option(
        "--model", "-m",
        help="Default generation model"
    )] = "nano-banana",
    api_key: Annotated[Optional[str], typer.Option(
        "--api-key",
        help="API key for the default model (stored in pixtree.toml)"
    )] = None,
):
    """
    Initialize a pixtree project in the current (or --project) directory.

    \b
    Examples:
        pixtree init
        pixtree init --name "Posters" --model seedream-4.0
    """
    pt = _get_pixtree()
    try:
        project = pt.init(name, description=description, default_model=model, api_key=api_key)
    except (PixtreeError, ValueError) as e:
        _fail(e, pt, "init")

    if _get_json_output():
        _echo_json(project)
        return
    typer.echo(f"Initialized project '{project.name}' in {pt.pixtree_dir}")
    typer.echo(f"Current tree: {project.settings.default_tree_on_import}")


@app.command()
def status():
    """Show the current tree, current node, and suggested next steps."""
    pt = _get_pixtree()
    try:
        info = pt.status()
    except (PixtreeError, ValueError) as e:
        _fail(e, pt, "status")

    if _get_json_output():
        _echo_json(info)
        return

    project = info.project
    typer.echo(f"Project: {project.name} ({project.id})")
    typer.echo(
        f"  {project.metadata.total_trees} trees, {project.metadata.total_images} images, "
        f"{project.metadata.total_size} bytes"
    )
    if info.current_tree is not None:
        typer.echo(f"Current tree: {info.current_tree.name} ({info.current_tree.id})")
    else:
        typer.echo("Current tree: none")
    if info.current_node is not None:
        typer.echo(f"Current node: {_format_node_line(info.current_node)}")
    else:
        typer.echo("Current node: none")
    others = [t for t in info.recent_trees if info.current_tree is None or t.id != info.current_tree.id]
    if others:
        typer.echo("Recent trees:")
        for tree in others:
            typer.echo(f"  {tree.id}  {tree.name}")
    if info.suggested_actions:
        typer.echo("Suggestions:")
        for action in info.suggested_actions:
            typer.echo(f"  - {action}")


@app.command()
def generate(
    prompt: Annotated[str, typer.Argument(help="Text prompt")],
    model: Annotated[Optional[str], typer.Option(
        "--model", "-m",
        help="Generation model (default: project default)"
    )] = None,
    tree: TreeOption = None,
    parent: Annotated[Optional[str], typer.Option(
        "--parent",
        help="Parent node ID (default: current node)"
    )] = None,
    root: Annotated[bool, typer.Option(
        "--root",
        help="Start a new root instead of deriving from the current node"
    )] = False,
    negative: Annotated[Optional[str], typer.Option(
        "--negative",
        help="Negative prompt"
    )] = None,
    param: Annotated[Optional[list[str]], typer.Option(
        "--param", "-P",
        help="Model parameter key=value (repeatable)"
    )] = None,
    tag: TagOption = None,
    image_to_image: Annotated[bool, typer.Option(
        "--from-parent",
        help="Send the parent's image to the model"
    )] = False,
):
    """
    Generate an image and store it as a new node.

    \b
    Examples:
        pixtree generate "a lighthouse at dusk"
        pixtree generate "same, in snow" -P seed=42 -t winter
        pixtree generate "new idea" --root
    """
    params = _parse_params(param)
    pt = _get_pixtree()
    try:
        node = pt.generate(
            prompt,
            model=model,
            tree_id=tree,
            parent_id=parent,
            use_current_as_parent=not root,
            negative_prompt=negative,
            params=params,
            tags=_split_tags(tag),
            image_to_image=image_to_image,
        )
    except (PixtreeError, ValueError) as e:
        _fail(e, pt, "generate")

    if _get_json_output():
        _echo_json(node)
    else:
        typer.echo(_format_node_line(node))


@app.command("import")
def import_image(
    path: Annotated[Path, typer.Argument(help="Image file to import")],
    tree: TreeOption = None,
    parent: Annotated[Optional[str], typer.Option(
        "--parent",
        help="Parent node ID"
    )] = None,
    method: Annotated[str, typer.Option(
        "--method",
        help="Import method: root, child, or editing-base"
    )] = "root",
    description: Annotated[Optional[str], typer.Option(
        "--description", "-d",
        help="What the image is"
    )] = None,
    purpose: Annotated[Optional[str], typer.Option(
        "--purpose",
        help="Purpose for a newly created tree: creative, reference, variation, experiment"
    )] = None,
    tag: TagOption = None,
    analyze: Annotated[Optional[bool], typer.Option(
        "--analyze/--no-analyze",
        help="Run AI analysis (default: project setting)"
    )] = None,
):
    """
    Import an image file as a new node.

    Without --tree the target tree is picked from the current tree and
    clues in the file path.
    """
    pt = _get_pixtree()
    try:
        node = pt.import_image(
            path,
            tree_id=tree,
            parent_id=parent,
            import_method=method,
            description=description,
            tags=_split_tags(tag),
            purpose=purpose,
            analyze=analyze,
        )
    except (PixtreeError, ValueError) as e:
        _fail(e, pt, "import")

    if _get_json_output():
        _echo_json(node)
    else:
        typer.echo(f"{_format_node_line(node)}  (tree {node.tree_id})")


@app.command()
def checkout(
    node_id: Annotated[str, typer.Argument(help="Node to make current")],
    switch: Annotated[bool, typer.Option(
        "--switch", "-s",
        help="Switch to the node's tree if it is not current"
    )] = False,
):
    """Make a node current (new generations derive from it)."""
    pt = _get_pixtree()
    try:
        node = pt.checkout(node_id, switch=switch)
    except (PixtreeError, ValueError) as e:
        _fail(e, pt, "checkout")

    if _get_json_output():
        _echo_json(node)
    else:
        typer.echo(f"Checked out {_format_node_line(node)}")


@app.command()
def search(
    text: Annotated[Optional[str], typer.Argument(help="Text to look for in prompts, descriptions, and tags")] = None,
    tag: TagOption = None,
    rating: Annotated[Optional[int], typer.Option("--rating", help="Exact rating")] = None,
    min_rating: Annotated[Optional[int], typer.Option("--min-rating", help="Minimum rating")] = None,
    model: Annotated[Optional[str], typer.Option("--model", "-m", help="Model name")] = None,
    tree: Annotated[Optional[str], typer.Option("--tree", help="Tree ID")] = None,
    favorite: Annotated[Optional[bool], typer.Option(
        "--favorite/--not-favorite",
        help="Only favorites (or only non-favorites)"
    )] = None,
    source: Annotated[Optional[str], typer.Option("--source", help="generated or imported")] = None,
    since: Annotated[Optional[str], typer.Option(
        "--since",
        help="Created since (ISO duration: P3D, P1W, PT1H; or date: 2026-01-15)"
    )] = None,
    until: Annotated[Optional[str], typer.Option(
        "--until",
        help="Created until (inclusive; same formats as --since)"
    )] = None,
    leaf: Annotated[Optional[bool], typer.Option(
        "--leaf/--has-children",
        help="Only leaves (or only nodes with children)"
    )] = None,
    limit: Annotated[int, typer.Option("--limit", "-n", help="Maximum results")] = 50,
):
    """
    Find nodes matching all of the given filters.

    \b
    Examples:
        pixtree search lighthouse
        pixtree search -t winter --min-rating 4
        pixtree search --since P1W --leaf
    """
    pt = _get_pixtree()
    try:
        query = SearchQuery(
            tags=_split_tags(tag) or None,
            text=text,
            rating=rating,
            min_rating=min_rating,
            model=model,
            tree_id=tree,
            favorite=favorite,
            source=source,
            since=parse_date_param(since) if since else None,
            until=parse_date_param(until, end_of_day=True) if until else None,
            is_leaf=leaf,
        )
        results = pt.search(query)
    except (PixtreeError, ValueError) as e:
        _fail(e, pt, "search")

    results = results[:limit]
    if _get_json_output():
        _echo_json(results)
        return
    if not results:
        typer.echo("No matching nodes.")
        return
    for node in results:
        typer.echo(_format_node_line(node))


@app.command()
def show(
    node_id: Annotated[Optional[str], typer.Argument(help="Node ID (default: current node)")] = None,
    lineage: Annotated[bool, typer.Option(
        "--lineage", "-l",
        help="Also show the chain of nodes it derives from"
    )] = False,
):
    """Show one node in detail."""
    pt = _get_pixtree()
    try:
        if node_id is None:
            node_id = pt.context().current_node_id
            if node_id is None:
                typer.echo("Error: No current node. Pass a node ID", err=True)
                raise typer.Exit(1)
        node = pt.get_node(node_id)
        chain = pt.lineage(node_id) if lineage else []
        history = pt.export_history(node_id)
    except (PixtreeError, ValueError) as e:
        _fail(e, pt, "show")

    if _get_json_output():
        data = node.to_dict()
        if lineage:
            data["lineage"] = [n.id for n in chain]
        data["exports"] = _to_jsonable(history)
        _echo_json(data)
        return
    typer.echo(_format_node_detail(node))
    if history:
        typer.echo(f"exports: {len(history)} (last: {history[-1].path})")
    if lineage:
        typer.echo("lineage:")
        for depth, ancestor in enumerate(chain):
            typer.echo(f"{'  ' * (depth + 1)}{_format_node_line(ancestor)}")


@app.command()
def export(
    node_id: Annotated[str, typer.Argument(help="Node to export")],
    destination: Annotated[str, typer.Argument(help="File or directory (trailing / creates it) to copy the image to")],
    name: Annotated[Optional[str], typer.Option(
        "--name",
        help="File name (without extension) when exporting to a directory"
    )] = None,
):
    """Copy a node's image out of the store."""
    pt = _get_pixtree()
    try:
        record = pt.export(node_id, destination, custom_name=name)
    except (PixtreeError, ValueError) as e:
        _fail(e, pt, "export")

    if _get_json_output():
        _echo_json(record)
    else:
        typer.echo(f"Exported {node_id} to {record.path}")


@app.command()
def diff(
    node_id1: Annotated[str, typer.Argument(help="First node")],
    node_id2: Annotated[str, typer.Argument(help="Second node")],
):
    """Compare two nodes."""
    pt = _get_pixtree()
    try:
        result = pt.diff(node_id1, node_id2)
    except (PixtreeError, ValueError) as e:
        _fail(e, pt, "diff")

    if _get_json_output():
        _echo_json({
            "node1": result.node1.id,
            "node2": result.node2.id,
            "similarity": result.similarity,
            "prompt_diff": result.prompt_diff,
            "config_diff": result.config_diff,
            "same_tree": result.same_tree,
            "same_project": result.same_project,
        })
        return
    typer.echo(f"Similarity: {result.similarity:.0%}")
    typer.echo(f"Same tree: {'yes' if result.same_tree else 'no'}")
    if result.prompt_diff:
        typer.echo(f"Prompts: {result.prompt_diff}")
    if result.config_diff:
        typer.echo("Config:")
        for key, values in result.config_diff.items():
            typer.echo(f"  {key}: {values['node1']!r} -> {values['node2']!r}")


@app.command()
def blend(
    node_id1: Annotated[str, typer.Argument(help="First node")],
    node_id2: Annotated[str, typer.Argument(help="Second node")],
    strategy: Annotated[str, typer.Option(
        "--strategy",
        help="blend, combine, or average"
    )] = "blend",
    weights: Annotated[Optional[str], typer.Option(
        "--weights",
        help="Relative weights as 'w1,w2' (e.g. 0.7,0.3)"
    )] = None,
    prompt: Annotated[Optional[str], typer.Option(
        "--prompt",
        help="Use this prompt instead of the blended one"
    )] = None,
    tree: TreeOption = None,
    preview: Annotated[bool, typer.Option(
        "--preview",
        help="Only show the blended prompt; do not generate"
    )] = False,
):
    """Generate a new node from the blend of two nodes' prompts."""
    parsed_weights = None
    if weights:
        try:
            w1, w2 = (float(w) for w in weights.split(","))
        except ValueError:
            typer.echo(f"Error: Invalid weights '{weights}'. Use w1,w2", err=True)
            raise typer.Exit(1)
        parsed_weights = (w1, w2)

    pt = _get_pixtree()
    try:
        if preview:
            result = pt.preview_blend(node_id1, node_id2, strategy=strategy, weights=parsed_weights)
        else:
            result = pt.merge(
                node_id1, node_id2,
                strategy=strategy,
                weights=parsed_weights,
                custom_prompt=prompt,
                tree_id=tree,
            )
    except (PixtreeError, ValueError) as e:
        _fail(e, pt, "blend")

    if _get_json_output():
        _echo_json(result)
    elif preview:
        typer.echo(f"Prompt: {result.result_prompt}")
        typer.echo(f"Explanation: {result.explanation}")
        typer.echo(f"Confidence: {result.confidence:.0%}")
    else:
        typer.echo(_format_node_line(result))


@app.command()
def validate():
    """Check every tree for broken parent links and cycles."""
    pt = _get_pixtree()
    try:
        results = pt.validate()
    except (PixtreeError, ValueError) as e:
        _fail(e, pt, "validate")

    all_results = [results["project"], *results["trees"].values()]
    valid = all(r.valid for r in all_results)
    if _get_json_output():
        _echo_json({"valid": valid, **results})
    else:
        for issue in results["project"].issues:
            typer.echo(f"project: {issue}")
        for tree_id, result in results["trees"].items():
            for issue in result.issues:
                typer.echo(f"{tree_id}: {issue}")
        if valid:
            typer.echo("All trees valid.")
    if not valid:
        raise typer.Exit(1)


@app.command()
def stats():
    """Show project statistics."""
    pt = _get_pixtree()
    try:
        data = pt.stats()
    except (PixtreeError, ValueError) as e:
        _fail(e, pt, "stats")

    if _get_json_output():
        _echo_json(data)
        return
    for key, value in data.items():
        if isinstance(value, dict):
            value = ", ".join(f"{k}={v}" for k, v in value.items()) or "-"
        typer.echo(f"{key}: {value}")


# -----------------------------------------------------------------------------
# Tree Commands
# -----------------------------------------------------------------------------

tree_app = typer.Typer(
    name="tree",
    help="Tree management: list, view, create, switch.",
    rich_markup_mode=None,
)
app.add_typer(tree_app)


@tree_app.command("list")
def tree_list(
    archived: Annotated[bool, typer.Option(
        "--archived", "-a",
        help="Include archived trees"
    )] = False,
    tag: TagOption = None,
):
    """List trees, most recently used first (* marks the current tree)."""
    pt = _get_pixtree()
    try:
        trees = pt.list_trees(include_archived=archived)
        if tag:
            wanted = {t.id for t in pt.search_trees(_split_tags(tag))}
            trees = [t for t in trees if t.id in wanted]
        current = pt.context().current_tree_id
    except (PixtreeError, ValueError) as e:
        _fail(e, pt, "tree list")

    if _get_json_output():
        _echo_json(trees)
        return
    if not trees:
        typer.echo("No trees.")
        return
    for tree in trees:
        typer.echo(_format_tree_line(tree, current))


@tree_app.command("view")
def tree_view(
    tree_id: Annotated[Optional[str], typer.Argument(help="Tree ID (default: current tree)")] = None,
):
    """Show a tree's derivation hierarchy."""
    pt = _get_pixtree()
    try:
        context = pt.context()
        tree_id = tree_id or context.current_tree_id
        if tree_id is None:
            typer.echo("Error: No current tree. Pass a tree ID", err=True)
            raise typer.Exit(1)
        tree = pt.get_tree(tree_id)
        forest = pt.tree_forest(tree_id)
        orphans = pt.tree_orphans(tree_id)
    except (PixtreeError, ValueError) as e:
        _fail(e, pt, "tree view")

    if _get_json_output():
        def as_dict(tree_node):
            return {
                "id": tree_node.node_id,
                "depth": tree_node.depth,
                "children": [as_dict(c) for c in tree_node.children],
            }
        _echo_json({
            "tree": tree.to_dict(),
            "nodes": [as_dict(t) for t in forest],
            "orphans": [n.id for n in orphans],
        })
        return

    typer.echo(f"{tree.name} ({tree.id}), {tree.metadata.total_nodes} nodes")
    for tree_node in walk(forest):
        marker = "*" if tree_node.node_id == context.current_node_id else " "
        typer.echo(f"{marker} {'  ' * tree_node.depth}{_format_node_line(tree_node.node)}")
    if orphans:
        typer.echo("Orphans (missing parent):")
        for node in orphans:
            typer.echo(f"  {_format_node_line(node)}")


@tree_app.command("create")
def tree_create(
    name: Annotated[str, typer.Argument(help="Tree name")],
    description: Annotated[Optional[str], typer.Option(
        "--description", "-d",
        help="Tree description"
    )] = None,
    purpose: Annotated[str, typer.Option(
        "--purpose",
        help="creative, reference, variation, or experiment"
    )] = "creative",
    tag: TagOption = None,
    no_switch: Annotated[bool, typer.Option(
        "--no-switch",
        help="Do not make the new tree current"
    )] = False,
):
    """Create a tree (and switch to it)."""
    pt = _get_pixtree()
    try:
        tree = pt.create_tree(
            name,
            description=description,
            purpose=purpose,
            tags=_split_tags(tag),
            switch=not no_switch,
        )
    except (PixtreeError, ValueError) as e:
        _fail(e, pt, "tree create")

    if _get_json_output():
        _echo_json(tree)
    else:
        typer.echo(f"Created tree {tree.id} ({tree.name})")


@tree_app.command("switch")
def tree_switch(
    tree_id: Annotated[Optional[str], typer.Argument(help="Tree to switch to")] = None,
):
    """Make a tree current. Without an ID, list recommended trees."""
    pt = _get_pixtree()
    try:
        if tree_id is None:
            recommendations = pt.tree_recommendations()
        else:
            tree = pt.switch_tree(tree_id)
    except (PixtreeError, ValueError) as e:
        _fail(e, pt, "tree switch")

    if tree_id is None:
        if _get_json_output():
            _echo_json([{"tree": t.to_dict(), "reason": reason} for t, reason in recommendations])
        elif not recommendations:
            typer.echo("No recommendations. Use: pixtree tree list")
        else:
            for tree, reason in recommendations:
                typer.echo(f"  {tree.id}  {tree.name}  ({reason})")
        return

    if _get_json_output():
        _echo_json(tree)
    else:
        typer.echo(f"Switched to tree {tree.name} ({tree.id})")


@tree_app.command("rename")
def tree_rename(
    tree_id: Annotated[str, typer.Argument(help="Tree ID")],
    name: Annotated[str, typer.Argument(help="New name")],
    description: Annotated[Optional[str], typer.Option(
        "--description", "-d",
        help="New description"
    )] = None,
    purpose: Annotated[Optional[str], typer.Option(
        "--purpose",
        help="New purpose"
    )] = None,
):
    """Rename a tree (optionally changing description and purpose)."""
    pt = _get_pixtree()
    try:
        tree = pt.update_tree(tree_id, name=name, description=description, purpose=purpose)
    except (PixtreeError, ValueError) as e:
        _fail(e, pt, "tree rename")

    if _get_json_output():
        _echo_json(tree)
    else:
        typer.echo(f"Renamed {tree.id} to {tree.name}")


@tree_app.command("tag")
def tree_tag(
    tree_id: Annotated[str, typer.Argument(help="Tree ID")],
    tags: Annotated[list[str], typer.Argument(help="Tags to add (space or comma separated)")],
):
    """Add tags to a tree."""
    pt = _get_pixtree()
    try:
        tree = pt.add_tree_tags(tree_id, _split_tags(tags))
    except (PixtreeError, ValueError) as e:
        _fail(e, pt, "tree tag")

    if _get_json_output():
        _echo_json(tree)
    else:
        typer.echo(f"{tree.id}: {', '.join(tree.tags) or '(no tags)'}")


@tree_app.command("untag")
def tree_untag(
    tree_id: Annotated[str, typer.Argument(help="Tree ID")],
    tags: Annotated[list[str], typer.Argument(help="Tags to remove")],
):
    """Remove tags from a tree."""
    pt = _get_pixtree()
    try:
        tree = pt.remove_tree_tags(tree_id, _split_tags(tags))
    except (PixtreeError, ValueError) as e:
        _fail(e, pt, "tree untag")

    if _get_json_output():
        _echo_json(tree)
    else:
        typer.echo(f"{tree.id}: {', '.join(tree.tags) or '(no tags)'}")


@tree_app.command("favorite")
def tree_favorite(
    tree_id: Annotated[str, typer.Argument(help="Tree ID")],
):
    """Toggle a tree's favorite flag."""
    pt = _get_pixtree()
    try:
        tree = pt.toggle_tree_favorite(tree_id)
    except (PixtreeError, ValueError) as e:
        _fail(e, pt, "tree favorite")

    if _get_json_output():
        _echo_json(tree)
    else:
        typer.echo(f"{tree.id} is {'now' if tree.favorite else 'no longer'} a favorite")


@tree_app.command("archive")
def tree_archive(
    tree_id: Annotated[str, typer.Argument(help="Tree ID")],
):
    """Hide a tree from the default listing."""
    pt = _get_pixtree()
    try:
        tree = pt.archive_tree(tree_id)
    except (PixtreeError, ValueError) as e:
        _fail(e, pt, "tree archive")

    if _get_json_output():
        _echo_json(tree)
    else:
        typer.echo(f"Archived {tree.id}")


@tree_app.command("unarchive")
def tree_unarchive(
    tree_id: Annotated[str, typer.Argument(help="Tree ID")],
):
    """Restore an archived tree."""
    pt = _get_pixtree()
    try:
        tree = pt.unarchive_tree(tree_id)
    except (PixtreeError, ValueError) as e:
        _fail(e, pt, "tree unarchive")

    if _get_json_output():
        _echo_json(tree)
    else:
        typer.echo(f"Unarchived {tree.id}")


@tree_app.command("delete")
def tree_delete(
    tree_id: Annotated[str, typer.Argument(help="Tree ID")],
    cascade: Annotated[bool, typer.Option(
        "--cascade",
        help="Also delete every node in the tree"
    )] = False,
    yes: Annotated[bool, typer.Option(
        "--yes", "-y",
        help="Do not ask for confirmation"
    )] = False,
):
    """Delete a tree. Refused while it has nodes unless --cascade."""
    if cascade and not yes and sys.stdin.isatty():
        typer.confirm(f"Delete tree {tree_id} and all of its nodes?", abort=True)
    pt = _get_pixtree()
    try:
        count = pt.delete_tree(tree_id, cascade=cascade)
    except (PixtreeError, ValueError) as e:
        _fail(e, pt, "tree delete")

    if _get_json_output():
        _echo_json({"deleted": tree_id, "nodes_deleted": count})
    else:
        typer.echo(f"Deleted tree {tree_id} ({count} nodes)")


@tree_app.command("repair")
def tree_repair(
    tree_id: Annotated[Optional[str], typer.Argument(help="Tree ID (default: all trees)")] = None,
):
    """Recompute cached tree metadata and node positions."""
    pt = _get_pixtree()
    try:
        trees = [pt.get_tree(tree_id)] if tree_id else pt.list_trees(include_archived=True)
        repaired = [pt.repair_tree(t.id) for t in trees]
    except (PixtreeError, ValueError) as e:
        _fail(e, pt, "tree repair")

    if _get_json_output():
        _echo_json(repaired)
        return
    for tree in repaired:
        typer.echo(
            f"{tree.id}: {tree.metadata.total_nodes} nodes, depth {tree.metadata.depth}, "
            f"{tree.metadata.leaf_count} leaves"
        )


# -----------------------------------------------------------------------------
# Node Commands
# -----------------------------------------------------------------------------

node_app = typer.Typer(
    name="node",
    help="Node management: update, delete.",
    rich_markup_mode=None,
)
app.add_typer(node_app)


@node_app.command("update")
def node_update(
    node_id: Annotated[str, typer.Argument(help="Node ID")],
    tag: Annotated[Optional[list[str]], typer.Option(
        "--tag", "-t",
        help="Add tag (repeatable, or comma-separated)"
    )] = None,
    remove: Annotated[Optional[list[str]], typer.Option(
        "--remove", "-r",
        help="Remove tag (repeatable)"
    )] = None,
    rating: Annotated[Optional[int], typer.Option(
        "--rating",
        help="Rating 1-5"
    )] = None,
    clear_rating: Annotated[bool, typer.Option(
        "--clear-rating",
        help="Remove the rating"
    )] = False,
    description: Annotated[Optional[str], typer.Option(
        "--description", "-d",
        help="Description ('' clears it)"
    )] = None,
    favorite: Annotated[Optional[bool], typer.Option(
        "--favorite/--unfavorite",
        help="Mark or unmark as favorite"
    )] = None,
):
    """
    Change a node's tags, rating, description, or favorite flag.

    \b
    Examples:
        pixtree node update node-abc --rating 5 --favorite
        pixtree node update node-abc -t winter -r draft
    """
    pt = _get_pixtree()
    try:
        node = pt.update_node(
            node_id,
            add_tags=_split_tags(tag),
            remove_tags=_split_tags(remove),
            rating=rating,
            clear_rating=clear_rating,
            description=description,
            favorite=favorite,
        )
    except (PixtreeError, ValueError) as e:
        _fail(e, pt, "node update")

    if _get_json_output():
        _echo_json(node)
    else:
        typer.echo(_format_node_line(node))


@node_app.command("delete")
def node_delete(
    node_id: Annotated[str, typer.Argument(help="Node ID")],
    cascade: Annotated[bool, typer.Option(
        "--cascade",
        help="Also delete every node derived from it"
    )] = False,
):
    """Delete a node. Refused while it has children unless --cascade."""
    pt = _get_pixtree()
    try:
        deleted = pt.delete_node(node_id, cascade=cascade)
    except (PixtreeError, ValueError) as e:
        _fail(e, pt, "node delete")

    if _get_json_output():
        _echo_json({"deleted": deleted})
    else:
        typer.echo(f"Deleted {len(deleted)} node(s): {', '.join(deleted)}")


# -----------------------------------------------------------------------------

def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        log_path = log_exception(e, context="pixtree CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
