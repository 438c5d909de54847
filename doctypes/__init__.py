from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

import json
import logging
import threading

import yaml
from jsonschema import ValidationError, validate
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as ModelValidationError

from core.config import get_catalog_path
from core.errors import CatalogLoadError, UnknownDocTypeError

logger = logging.getLogger(__name__)


# Pydantic models -----------------------------------------------------------

class RequirementSpec(BaseModel):
    """One fact a document needs.

    ``weight`` is left unset when the catalog omits it so that callers can
    apply their own default (coverage counts an unset weight as 1, question
    planning counts an unset optional weight as 0.5).
    """

    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    description: str = ""
    weight: Optional[float] = Field(default=None, ge=0)
    required: bool = False

    @property
    def coverage_weight(self) -> float:
        return 1.0 if self.weight is None else float(self.weight)

    @property
    def planning_weight(self) -> float:
        if self.weight is not None:
            return float(self.weight)
        return 1.0 if self.required else 0.5


class QuestionSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    text: str
    targets: List[str]


class ResearchPromptSpec(BaseModel):
    """External research hint; carried through to sessions, never executed here."""

    model_config = ConfigDict(frozen=True)

    query: str
    applies_to: List[str] = Field(default_factory=list)


class DocumentDefinition(BaseModel):
    """Parsed, validated document type. Shared read-only across sessions."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str = ""
    stage_hint: Optional[str] = None
    template: str
    template_markdown: Optional[str] = None
    prerequisites: Optional[str] = None
    aliases: List[str] = Field(default_factory=list)
    question_source: Literal["catalog", "blueprint"] = "catalog"
    blueprint: Optional[str] = None
    required_fields: List[RequirementSpec] = Field(default_factory=list)
    optional_fields: List[RequirementSpec] = Field(default_factory=list)
    questions: List[QuestionSpec] = Field(default_factory=list)
    research_prompts: List[ResearchPromptSpec] = Field(default_factory=list)

    @property
    def all_fields(self) -> List[RequirementSpec]:
        return [*self.required_fields, *self.optional_fields]

    @property
    def field_ids(self) -> List[str]:
        return [f.id for f in self.all_fields]

    def get_field(self, field_id: str) -> Optional[RequirementSpec]:
        for f in self.all_fields:
            if f.id == field_id:
                return f
        return None

    def field_label(self, field_id: str) -> str:
        f = self.get_field(field_id)
        return f.label if f else field_id

    @property
    def default_title(self) -> str:
        return f"{self.name} Draft"


class DocumentOption(BaseModel):
    """Listing projection of a catalog entry."""

    id: str
    name: str
    description: str
    stage_hint: Optional[str] = None


# Constants -----------------------------------------------------------------

_PACKAGE_DIR = Path(__file__).resolve().parent
_SCHEMA = json.loads((_PACKAGE_DIR / "schema.json").read_text())
DEFAULT_CATALOG_PATH = _PACKAGE_DIR / "doc_types.yaml"


# Parsing -------------------------------------------------------------------

def _normalize_requirement(raw: Dict[str, Any], required: bool) -> RequirementSpec:
    return RequirementSpec(
        id=raw["id"],
        label=raw["label"],
        description=raw.get("description", ""),
        weight=raw.get("weight"),
        required=required,
    )


def _normalize_definition(raw: Dict[str, Any]) -> DocumentDefinition:
    return DocumentDefinition(
        id=raw["id"],
        name=raw["name"],
        description=raw.get("description", ""),
        stage_hint=raw.get("stage_hint"),
        template=raw["template"],
        template_markdown=raw.get("document_template"),
        prerequisites=raw.get("pre_requisites_documents"),
        aliases=[a.strip().lower() for a in raw.get("aliases") or [] if a.strip()],
        question_source=raw.get("question_source", "catalog"),
        blueprint=raw.get("blueprint"),
        required_fields=[_normalize_requirement(f, True) for f in raw.get("required_fields") or []],
        optional_fields=[_normalize_requirement(f, False) for f in raw.get("optional_fields") or []],
        questions=[QuestionSpec(**q) for q in raw.get("diagnostic_questions") or []],
        research_prompts=[
            ResearchPromptSpec(query=r["query"], applies_to=r.get("applies_to") or [])
            for r in raw.get("research_prompts") or []
        ],
    )


def _check_references(definition: DocumentDefinition, source: str) -> None:
    declared = set()
    for f in definition.all_fields:
        if f.id in declared:
            raise CatalogLoadError(
                f"{source}: doc type '{definition.id}' declares field '{f.id}' more than once"
            )
        declared.add(f.id)

    for question in definition.questions:
        unknown = [t for t in question.targets if t not in declared]
        if unknown:
            raise CatalogLoadError(
                f"{source}: question '{question.id}' in doc type '{definition.id}' "
                f"targets undefined field(s): {', '.join(unknown)}"
            )

    for prompt in definition.research_prompts:
        unknown = [t for t in prompt.applies_to if t not in declared]
        if unknown:
            raise CatalogLoadError(
                f"{source}: research prompt '{prompt.query}' in doc type '{definition.id}' "
                f"applies to undefined field(s): {', '.join(unknown)}"
            )

    if definition.question_source == "blueprint" and not definition.blueprint:
        raise CatalogLoadError(
            f"{source}: doc type '{definition.id}' uses a blueprint question source but names no blueprint"
        )


def parse_catalog(data: Any, source: str = "<memory>") -> Dict[str, DocumentDefinition]:
    """Validate raw catalog data and return definitions keyed by id."""
    if not isinstance(data, dict) or not isinstance(data.get("doc_types"), list):
        raise CatalogLoadError(f"{source} is missing `doc_types` array")

    try:
        validate(instance=data, schema=_SCHEMA)
    except ValidationError as e:
        path = "/".join(str(p) for p in e.absolute_path) or "<root>"
        raise CatalogLoadError(f"{source} failed schema validation at {path}: {e.message}") from e

    result: Dict[str, DocumentDefinition] = {}
    for raw in data["doc_types"]:
        try:
            definition = _normalize_definition(raw)
        except ModelValidationError as e:
            raise CatalogLoadError(f"{source}: invalid doc type '{raw.get('id')}': {e}") from e
        if definition.id in result:
            raise CatalogLoadError(f"{source}: doc type '{definition.id}' is defined more than once")
        _check_references(definition, source)
        result[definition.id] = definition
    return result


# Catalog -------------------------------------------------------------------

class DocumentCatalog:
    """Process-scoped catalog of document definitions.

    Loaded lazily on first access and cached for the lifetime of the object.
    Concurrent first access triggers exactly one load.
    """

    def __init__(self, path: Union[str, Path, None] = None) -> None:
        self._explicit_path = Path(path) if path else None
        self._lock = threading.Lock()
        self._definitions: Optional[Dict[str, DocumentDefinition]] = None

    @property
    def path(self) -> Path:
        if self._explicit_path:
            return self._explicit_path
        configured = get_catalog_path()
        return Path(configured) if configured else DEFAULT_CATALOG_PATH

    def load(self) -> Dict[str, DocumentDefinition]:
        cached = self._definitions
        if cached is not None:
            return cached
        with self._lock:
            if self._definitions is None:
                self._definitions = self._read()
            return self._definitions

    def _read(self) -> Dict[str, DocumentDefinition]:
        path = self.path
        try:
            raw = yaml.safe_load(path.read_text(encoding="utf-8"))
        except OSError as e:
            logger.error(f"❌ CATALOG: Unable to read {path}: {e}")
            raise CatalogLoadError(f"Unable to read doc type catalog at {path}: {e}") from e
        except yaml.YAMLError as e:
            logger.error(f"❌ CATALOG: Malformed YAML in {path}: {e}")
            raise CatalogLoadError(f"Malformed doc type catalog at {path}: {e}") from e

        definitions = parse_catalog(raw, source=str(path))
        logger.info(f"✓ Doc type catalog loaded: {len(definitions)} definitions from {path}")
        return definitions

    def get(self, doc_type: str) -> DocumentDefinition:
        definitions = self.load()
        definition = definitions.get(doc_type)
        if definition is None:
            raise UnknownDocTypeError(doc_type, definitions.keys())
        return definition

    def ids(self) -> List[str]:
        return list(self.load().keys())

    def list(self) -> List[DocumentOption]:
        return [
            DocumentOption(
                id=d.id,
                name=d.name,
                description=d.description,
                stage_hint=d.stage_hint,
            )
            for d in self.load().values()
        ]

    def clear(self) -> None:
        with self._lock:
            self._definitions = None


_DEFAULT_CATALOG = DocumentCatalog()


def get_catalog() -> DocumentCatalog:
    return _DEFAULT_CATALOG


def clear_catalog_cache() -> None:
    """Clear the process catalog cache.

    WARNING: intended for tests. In production the catalog is loaded once at
    startup and catalog changes require a restart.
    """
    _DEFAULT_CATALOG.clear()
    logger.debug("Doc type catalog cache cleared")


__all__ = [
    "RequirementSpec",
    "QuestionSpec",
    "ResearchPromptSpec",
    "DocumentDefinition",
    "DocumentOption",
    "DocumentCatalog",
    "DEFAULT_CATALOG_PATH",
    "parse_catalog",
    "get_catalog",
    "clear_catalog_cache",
]
