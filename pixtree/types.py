"""
Data types for pixtree.

Entities (Project, Tree, ImageNode) are plain dataclasses that serialize to
JSON-ready dicts with ``to_dict()`` and back with ``from_dict()``. Unknown
keys in stored files are ignored so older readers tolerate newer files.
"""

import re
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, ClassVar, Optional


SOURCES = ("generated", "imported")
IMPORT_METHODS = ("root", "child", "editing-base")
TREE_PURPOSES = ("creative", "reference", "variation", "experiment")

MIN_RATING = 1
MAX_RATING = 5
MAX_TAG_LENGTH = 64

# Tags: no whitespace at the ends, no commas (CLI splits on them), no control chars
_TAG_BLOCKED_RE = re.compile(r'[\x00-\x1f\x7f,]')


def utc_now() -> str:
    """Current UTC timestamp: YYYY-MM-DDTHH:MM:SS.mmmZ.

    Millisecond precision keeps sibling ordering by creation time stable
    for nodes created in quick succession.
    """
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_utc_timestamp(ts: str) -> datetime:
    """Parse a stored timestamp string to a timezone-aware UTC datetime.

    Accepts the canonical format as well as plain ISO timestamps with or
    without an offset. Naive values are taken to be UTC.
    """
    ts = ts.replace("Z", "+00:00")
    dt = datetime.fromisoformat(ts)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def local_date(utc_iso: str) -> str:
    """Convert a UTC ISO timestamp to a local-timezone date string (YYYY-MM-DD).

    Used for short-form display dates. Returns empty string for empty/invalid input.
    """
    if not utc_iso:
        return ""
    try:
        dt = parse_utc_timestamp(utc_iso)
        return dt.astimezone().strftime("%Y-%m-%d")
    except (ValueError, OverflowError):
        return utc_iso[:10] if len(utc_iso) >= 10 else utc_iso


def validate_rating(rating: Optional[int]) -> Optional[int]:
    """Check a rating is None or an integer in [1, 5]."""
    if rating is None:
        return None
    if isinstance(rating, bool) or not isinstance(rating, int):
        raise ValueError(f"Rating must be an integer {MIN_RATING}-{MAX_RATING}: {rating!r}")
    if not MIN_RATING <= rating <= MAX_RATING:
        raise ValueError(f"Rating must be between {MIN_RATING} and {MAX_RATING}: {rating}")
    return rating


def validate_tag(tag: str) -> str:
    """Validate and normalize a single tag (surrounding whitespace stripped)."""
    tag = tag.strip()
    if not tag or len(tag) > MAX_TAG_LENGTH:
        raise ValueError(f"Tag must be 1-{MAX_TAG_LENGTH} characters: {tag!r}")
    if _TAG_BLOCKED_RE.search(tag):
        raise ValueError(f"Tag contains invalid characters: {tag!r}")
    return tag


def normalize_tags(tags) -> list[str]:
    """Validate tags and drop duplicates, keeping first-seen order."""
    result: list[str] = []
    for tag in tags or []:
        tag = validate_tag(tag)
        if tag not in result:
            result.append(tag)
    return result


def validate_purpose(purpose: str) -> str:
    if purpose not in TREE_PURPOSES:
        raise ValueError(
            f"Unknown tree purpose: {purpose!r} (expected one of {', '.join(TREE_PURPOSES)})"
        )
    return purpose


def _known(cls, d: dict) -> dict:
    """Restrict a dict to the dataclass fields of cls."""
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in d.items() if k in names}


# ---------------------------------------------------------------------------
# Model configuration (one variant per generation backend)
# ---------------------------------------------------------------------------

@dataclass
class NanoBananaConfig:
    """Parameters for Gemini image models ("nano-banana")."""
    kind: ClassVar[str] = "nano-banana"

    prompt: str = ""
    model: str = "gemini-2.5-flash-image"
    temperature: float = 1.0
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    candidate_count: int = 1
    seed: Optional[int] = None
    aspect_ratio: str = "1:1"

    def as_params(self) -> dict[str, Any]:
        """Backend parameters, without unset values."""
        return {k: v for k, v in asdict(self).items() if v is not None}

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, **asdict(self)}


@dataclass
class SeedreamConfig:
    """Parameters for ByteDance Seedream models."""
    kind: ClassVar[str] = "seedream-4.0"

    prompt: str = ""
    model: str = "seedream-4-0-250828"
    size: str = "2K"
    seed: Optional[int] = None
    guidance_scale: Optional[float] = None
    watermark: bool = False

    def as_params(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, **asdict(self)}


@dataclass
class GenericModelConfig:
    """Parameters for a backend without a dedicated config type."""
    kind: str
    prompt: str = ""
    params: dict[str, Any] = field(default_factory=dict)

    def as_params(self) -> dict[str, Any]:
        return {"prompt": self.prompt, **self.params}

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "prompt": self.prompt, "params": dict(self.params)}


ModelConfig = NanoBananaConfig | SeedreamConfig | GenericModelConfig

_MODEL_CONFIG_TYPES: dict[str, type] = {
    NanoBananaConfig.kind: NanoBananaConfig,
    SeedreamConfig.kind: SeedreamConfig,
}


def model_config_from_dict(d: dict[str, Any]) -> ModelConfig:
    """Rebuild a model config from its stored form, dispatching on ``kind``."""
    d = dict(d)
    kind = d.pop("kind", None) or "unknown"
    config_cls = _MODEL_CONFIG_TYPES.get(kind)
    if config_cls is None:
        params = d.pop("params", None)
        if params is None:
            params = {k: v for k, v in d.items() if k != "prompt"}
        return GenericModelConfig(kind=kind, prompt=d.get("prompt", ""), params=params)
    return config_cls(**_known(config_cls, d))


def make_model_config(model: str, prompt: str, overrides: Optional[dict[str, Any]] = None) -> ModelConfig:
    """
    Build the config variant for a model from a prompt and user overrides.

    Raises:
        ValueError: If an override names a parameter the model does not accept
    """
    overrides = dict(overrides or {})
    config_cls = _MODEL_CONFIG_TYPES.get(model)
    if config_cls is None:
        return GenericModelConfig(kind=model, prompt=prompt, params=overrides)
    allowed = {f.name for f in fields(config_cls)} - {"prompt"}
    unknown = sorted(set(overrides) - allowed)
    if unknown:
        raise ValueError(
            f"Unknown parameter(s) for {model}: {', '.join(unknown)}. "
            f"Allowed: {', '.join(sorted(allowed))}"
        )
    return config_cls(prompt=prompt, **overrides)


# ---------------------------------------------------------------------------
# ImageNode
# ---------------------------------------------------------------------------

@dataclass
class GenerationParams:
    prompt: str
    model_config: ModelConfig
    negative_prompt: Optional[str] = None
    derived_from: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "prompt": self.prompt,
            "negative_prompt": self.negative_prompt,
            "model_config": self.model_config.to_dict(),
            "derived_from": self.derived_from,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "GenerationParams":
        return cls(
            prompt=d.get("prompt", ""),
            model_config=model_config_from_dict(d.get("model_config") or {}),
            negative_prompt=d.get("negative_prompt"),
            derived_from=d.get("derived_from"),
        )


@dataclass
class ImportInfo:
    original_path: str
    original_filename: str
    user_description: Optional[str] = None
    import_method: str = "root"
    auto_assigned_tree: bool = False


@dataclass
class UserMetadata:
    favorite: bool = False
    rating: Optional[int] = None
    description: Optional[str] = None


@dataclass
class FileMetadata:
    size: int = 0
    width: int = 0
    height: int = 0
    format: str = "png"
    generation_time: Optional[float] = None  # seconds
    has_alpha: bool = False


@dataclass
class AnalysisResult:
    """What an analysis backend reports about an image."""
    description: str
    detected_objects: list[str] = field(default_factory=list)
    style: str = ""
    confidence: float = 0.0
    mood: Optional[str] = None
    composition: Optional[str] = None


@dataclass
class TreePosition:
    depth: int = 0
    child_index: int = 0
    has_children: bool = False
    is_leaf: bool = True


@dataclass
class ImageNode:
    """
    One stored artifact, generated by a model or imported from disk.

    ``parent_id`` is the derivation edge. ``position`` is derived from the
    tree structure and refreshed whenever siblings or children change.
    """
    id: str
    project_id: str
    tree_id: str
    image_path: str
    image_hash: str
    source: str
    created_at: str
    last_accessed: str
    parent_id: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    model: Optional[str] = None
    generation: Optional[GenerationParams] = None
    import_info: Optional[ImportInfo] = None
    user: UserMetadata = field(default_factory=UserMetadata)
    file: FileMetadata = field(default_factory=FileMetadata)
    ai_analysis: Optional[AnalysisResult] = None
    position: TreePosition = field(default_factory=TreePosition)

    @property
    def prompt(self) -> str:
        """The generation prompt, or empty string for imports."""
        if self.generation is None:
            return ""
        return self.generation.prompt or self.generation.model_config.prompt

    @property
    def rating(self) -> Optional[int]:
        return self.user.rating

    @property
    def favorite(self) -> bool:
        return self.user.favorite

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["generation"] = self.generation.to_dict() if self.generation else None
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "ImageNode":
        d = _known(cls, d)
        generation = d.pop("generation", None)
        import_info = d.pop("import_info", None)
        analysis = d.pop("ai_analysis", None)
        return cls(
            **{k: v for k, v in d.items() if k not in ("user", "file", "position")},
            generation=GenerationParams.from_dict(generation) if generation else None,
            import_info=ImportInfo(**_known(ImportInfo, import_info)) if import_info else None,
            user=UserMetadata(**_known(UserMetadata, d.get("user") or {})),
            file=FileMetadata(**_known(FileMetadata, d.get("file") or {})),
            ai_analysis=AnalysisResult(**_known(AnalysisResult, analysis)) if analysis else None,
            position=TreePosition(**_known(TreePosition, d.get("position") or {})),
        )

    def __str__(self) -> str:
        label = self.prompt or (self.import_info.original_filename if self.import_info else "")
        return f"{self.id}: {label[:60]}"


# ---------------------------------------------------------------------------
# Tree
# ---------------------------------------------------------------------------

@dataclass
class TreeMetadata:
    """Cached aggregates; always recomputable from the member nodes."""
    total_nodes: int = 0
    depth: int = 0
    total_size: int = 0
    branch_count: int = 0
    leaf_count: int = 0


@dataclass
class TreeStats:
    total_generations: int = 0
    total_imports: int = 0
    last_activity: Optional[str] = None
    avg_rating: float = 0.0
    most_used_prompts: list[str] = field(default_factory=list)


@dataclass
class Tree:
    """A named collection of derivation chains (one creative direction)."""
    id: str
    project_id: str
    name: str
    created_at: str
    last_accessed: str
    description: Optional[str] = None
    purpose: str = "creative"
    metadata: TreeMetadata = field(default_factory=TreeMetadata)
    root_node_id: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    favorite: bool = False
    archived: bool = False
    stats: TreeStats = field(default_factory=TreeStats)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Tree":
        d = _known(cls, d)
        metadata = d.pop("metadata", None) or {}
        stats = d.pop("stats", None) or {}
        return cls(
            **d,
            metadata=TreeMetadata(**_known(TreeMetadata, metadata)),
            stats=TreeStats(**_known(TreeStats, stats)),
        )


# ---------------------------------------------------------------------------
# Project
# ---------------------------------------------------------------------------

@dataclass
class ProjectMetadata:
    total_trees: int = 0
    total_images: int = 0
    total_size: int = 0
    tags: list[str] = field(default_factory=list)
    favorite_count: int = 0
    avg_rating: float = 0.0


@dataclass
class ProjectSettings:
    default_model: str = "nano-banana"
    auto_tagging: bool = True
    auto_analysis: bool = False
    default_tree_on_import: Optional[str] = None


@dataclass
class ProjectStats:
    total_generations: int = 0
    total_imports: int = 0
    last_activity: Optional[str] = None
    model_usage: dict[str, int] = field(default_factory=dict)
    top_tags: dict[str, int] = field(default_factory=dict)


@dataclass
class Project:
    """The single top-level container of a working copy."""
    id: str
    name: str
    created_at: str
    last_accessed: str
    description: Optional[str] = None
    metadata: ProjectMetadata = field(default_factory=ProjectMetadata)
    settings: ProjectSettings = field(default_factory=ProjectSettings)
    stats: ProjectStats = field(default_factory=ProjectStats)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Project":
        d = _known(cls, d)
        metadata = d.pop("metadata", None) or {}
        settings = d.pop("settings", None) or {}
        stats = d.pop("stats", None) or {}
        return cls(
            **d,
            metadata=ProjectMetadata(**_known(ProjectMetadata, metadata)),
            settings=ProjectSettings(**_known(ProjectSettings, settings)),
            stats=ProjectStats(**_known(ProjectStats, stats)),
        )


# ---------------------------------------------------------------------------
# Operation results
# ---------------------------------------------------------------------------

@dataclass
class DiffResult:
    """Comparison of two nodes."""
    node1: ImageNode
    node2: ImageNode
    similarity: float  # 0-1
    prompt_diff: Optional[str] = None
    config_diff: Optional[dict[str, dict[str, Any]]] = None
    same_tree: bool = False
    same_project: bool = False


@dataclass
class BlendPreview:
    result_prompt: str
    explanation: str
    expected_changes: list[str] = field(default_factory=list)
    confidence: float = 0.0
    suggested_tree_id: Optional[str] = None
    suggested_tags: list[str] = field(default_factory=list)


@dataclass
class StatusInfo:
    project: Project
    current_tree: Optional[Tree]
    current_node: Optional[ImageNode]
    recent_trees: list[Tree]
    suggested_actions: list[str] = field(default_factory=list)
