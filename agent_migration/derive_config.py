"""Stage 6: Derive the agent configuration record from document traits.

The record is not parsed from prose. It is computed from two declared traits
(role, domain) read from the frontmatter or given on the command line:

  role   -> (primary prompt set, ending prompt set, output format)
            via the decision table; an unknown role is fatal
  domain -> candidate skills from the catalog, split into precompiled and
            dynamic by usage frequency for the role

The role table and the skill catalog are YAML data. ``derive_configuration``
is the only code that reads their policy fields.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path

import jsonschema
import yaml

from agent_migration.errors import DecisionTableError, InvalidConfigurationRecord, UnresolvedRole
from agent_migration.tokenize_blocks import Block, BlockKind, MigrationWarning

DATA_DIR = Path(__file__).resolve().parent / "data"
DEFAULT_ROLE_TABLE_PATH = DATA_DIR / "role_table.yaml"
DEFAULT_CATALOG_PATH = DATA_DIR / "skill_catalog.yaml"
RECORD_SCHEMA_PATH = DATA_DIR / "configuration_record.schema.json"

# Usage frequency scale, least to most frequent.
FREQUENCY_RANKS = {"rare": 0, "some": 1, "most": 2, "always": 3}
DEFAULT_THRESHOLD = "most"

# Warning codes
INVALID_FRONTMATTER = "InvalidFrontmatter"
UNKNOWN_DOMAIN = "UnknownDomain"


class PromptSet(str, Enum):
    DEVELOPER = "developer"
    REVIEWER = "reviewer"
    PM = "pm"


class OutputFormat(str, Enum):
    DEVELOPER = "output-format-developer"
    REVIEWER = "output-format-reviewer"
    PM = "output-format-pm"


class SkillsPolicy(str, Enum):
    THRESHOLD = "threshold"
    BROAD_CONTEXT = "broad-context"
    NO_DOMAIN_SKILLS = "no-domain-skills"


# ─── Data classes ────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class SkillRef:
    id: str
    path: str
    display_name: str
    usage_phrase: str


@dataclass(frozen=True)
class ConfigurationRecord:
    agent_id: str
    primary_prompt_set: PromptSet
    ending_prompt_set: PromptSet
    output_format: OutputFormat
    skills_precompiled: tuple[SkillRef, ...] = ()
    skills_dynamic: tuple[SkillRef, ...] = ()

    def to_dict(self) -> dict:
        return {
            "agent_id": self.agent_id,
            "primary_prompt_set": self.primary_prompt_set.value,
            "ending_prompt_set": self.ending_prompt_set.value,
            "output_format": self.output_format.value,
            "skills_precompiled": [asdict(s) for s in self.skills_precompiled],
            "skills_dynamic": [asdict(s) for s in self.skills_dynamic],
        }


@dataclass(frozen=True)
class DocumentTraits:
    """Declared signals the record is derived from."""
    role: str | None = None
    domain: str | None = None
    skills_policy: str | None = None
    agent_name: str | None = None


@dataclass(frozen=True)
class RoleEntry:
    role: str
    prompt_set: PromptSet
    ending_prompt_set: PromptSet
    output_format: OutputFormat
    skills_policy: SkillsPolicy = SkillsPolicy.THRESHOLD
    broad_context_domains: frozenset[str] = frozenset()
    precompile_threshold: str = DEFAULT_THRESHOLD


@dataclass
class DecisionTable:
    roles: dict[str, RoleEntry] = field(default_factory=dict)

    def known_roles(self) -> list[str]:
        return sorted(self.roles)


@dataclass(frozen=True)
class CatalogEntry:
    id: str
    path: str
    display_name: str
    usage_phrase: str
    domains: frozenset[str]
    frequency: dict[str, str]

    def frequency_for(self, role: str) -> str:
        return self.frequency.get(role, self.frequency.get("default", "some"))

    def to_ref(self) -> SkillRef:
        return SkillRef(self.id, self.path, self.display_name, self.usage_phrase)


@dataclass
class SkillCatalog:
    skills: dict[str, CatalogEntry] = field(default_factory=dict)

    def domains(self) -> set[str]:
        return {d for s in self.skills.values() for d in s.domains}

    def for_domain(self, domain: str) -> list[CatalogEntry]:
        return [self.skills[k] for k in sorted(self.skills) if domain in self.skills[k].domains]

    def all_entries(self) -> list[CatalogEntry]:
        return [self.skills[k] for k in sorted(self.skills)]


# ─── Loading ─────────────────────────────────────────────────────────────────

def _read_yaml(path: Path) -> dict:
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise DecisionTableError(f"Cannot read {path}: {e}") from e
    except yaml.YAMLError as e:
        raise DecisionTableError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise DecisionTableError(f"{path} must contain a mapping")
    return data


def _enum_value(enum_cls, value, where: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise DecisionTableError(f"{where}: {value!r} is not one of {allowed}") from None


def _check_threshold(value: str, where: str) -> str:
    if value not in FREQUENCY_RANKS:
        raise DecisionTableError(
            f"{where}: frequency {value!r} is not one of {', '.join(FREQUENCY_RANKS)}"
        )
    return value


def parse_decision_table(data: dict) -> DecisionTable:
    threshold = _check_threshold(data.get("precompile_threshold", DEFAULT_THRESHOLD),
                                 "precompile_threshold")
    roles = data.get("roles") or {}
    if not roles:
        raise DecisionTableError("decision table defines no roles")

    table = DecisionTable()
    for role, spec in roles.items():
        where = f"roles.{role}"
        if not isinstance(spec, dict) or "prompt_set" not in spec or "output_format" not in spec:
            raise DecisionTableError(f"{where} needs prompt_set and output_format")
        prompt_set = _enum_value(PromptSet, spec["prompt_set"], where)
        table.roles[role] = RoleEntry(
            role=role,
            prompt_set=prompt_set,
            # Ending prompts mirror the primary set unless overridden.
            ending_prompt_set=_enum_value(PromptSet, spec.get("ending_prompt_set", prompt_set.value), where),
            output_format=_enum_value(OutputFormat, spec["output_format"], where),
            skills_policy=_enum_value(SkillsPolicy, spec.get("skills_policy", "threshold"), where),
            broad_context_domains=frozenset(spec.get("broad_context_domains") or []),
            precompile_threshold=_check_threshold(spec.get("precompile_threshold", threshold), where),
        )
    return table


def parse_skill_catalog(data: dict) -> SkillCatalog:
    catalog = SkillCatalog()
    for skill_id, spec in (data.get("skills") or {}).items():
        where = f"skills.{skill_id}"
        if not isinstance(spec, dict):
            raise DecisionTableError(f"{where} must be a mapping")
        frequency = spec.get("frequency") or {}
        for role, freq in frequency.items():
            _check_threshold(freq, f"{where}.frequency.{role}")
        catalog.skills[skill_id] = CatalogEntry(
            id=skill_id,
            path=spec.get("path", ""),
            display_name=spec.get("display_name", skill_id),
            usage_phrase=spec.get("usage_phrase", ""),
            domains=frozenset(spec.get("domains") or []),
            frequency=dict(frequency),
        )
    return catalog


def load_decision_table(path: str | Path | None = None) -> DecisionTable:
    return parse_decision_table(_read_yaml(Path(path) if path else DEFAULT_ROLE_TABLE_PATH))


def load_skill_catalog(path: str | Path | None = None) -> SkillCatalog:
    return parse_skill_catalog(_read_yaml(Path(path) if path else DEFAULT_CATALOG_PATH))


# ─── Trait extraction ────────────────────────────────────────────────────────

def _norm(value) -> str | None:
    if value is None:
        return None
    text = str(value).strip().lower()
    return text or None


def parse_frontmatter(blocks: list[Block]) -> tuple[dict, list[MigrationWarning]]:
    """Parse the YAML of the frontmatter block, if any."""
    fm = next((b for b in blocks if b.kind is BlockKind.FRONTMATTER), None)
    if fm is None:
        return {}, []
    try:
        data = yaml.safe_load(fm.body)
    except yaml.YAMLError as e:
        return {}, [MigrationWarning(INVALID_FRONTMATTER, f"Frontmatter is not valid YAML: {e}", fm.order)]
    if data is None:
        return {}, []
    if not isinstance(data, dict):
        return {}, [MigrationWarning(INVALID_FRONTMATTER, "Frontmatter is not a mapping", fm.order)]
    return data, []


def extract_traits(
    blocks: list[Block],
    role: str | None = None,
    domain: str | None = None,
    skills_policy: str | None = None,
) -> tuple[DocumentTraits, list[MigrationWarning]]:
    """Read role/domain from the frontmatter; explicit arguments win."""
    data, warnings = parse_frontmatter(blocks)
    traits = DocumentTraits(
        role=_norm(role) or _norm(data.get("role")),
        domain=_norm(domain) or _norm(data.get("domain")),
        skills_policy=_norm(skills_policy) or _norm(data.get("skills_policy")),
        agent_name=_norm(data.get("name")),
    )
    return traits, warnings


# ─── Derivation ──────────────────────────────────────────────────────────────

def resolve_skills_policy(traits: DocumentTraits, entry: RoleEntry) -> SkillsPolicy:
    if traits.skills_policy:
        return _enum_value(SkillsPolicy, traits.skills_policy, "skills_policy")
    if traits.domain and traits.domain in entry.broad_context_domains:
        return SkillsPolicy.BROAD_CONTEXT
    return entry.skills_policy


def partition_skills(
    traits: DocumentTraits,
    entry: RoleEntry,
    catalog: SkillCatalog,
) -> tuple[tuple[SkillRef, ...], tuple[SkillRef, ...], list[MigrationWarning]]:
    """Split the domain's skills into (precompiled, dynamic)."""
    policy = resolve_skills_policy(traits, entry)

    if policy is SkillsPolicy.NO_DOMAIN_SKILLS:
        return (), (), []

    if policy is SkillsPolicy.BROAD_CONTEXT:
        return (), tuple(s.to_ref() for s in catalog.all_entries()), []

    if not traits.domain or traits.domain not in catalog.domains():
        shown = traits.domain or "(none declared)"
        return (), (), [MigrationWarning(
            UNKNOWN_DOMAIN,
            f"Domain {shown!r} has no skills in the catalog; skill lists left empty",
        )]

    threshold = FREQUENCY_RANKS[entry.precompile_threshold]
    precompiled, dynamic = [], []
    for skill in catalog.for_domain(traits.domain):
        if FREQUENCY_RANKS[skill.frequency_for(entry.role)] >= threshold:
            precompiled.append(skill.to_ref())
        else:
            dynamic.append(skill.to_ref())
    return tuple(precompiled), tuple(dynamic), []


def derive_configuration(
    traits: DocumentTraits,
    table: DecisionTable,
    catalog: SkillCatalog,
    agent_id: str,
) -> tuple[ConfigurationRecord, list[MigrationWarning]]:
    """Map traits to a ConfigurationRecord. Raises UnresolvedRole."""
    entry = table.roles.get(traits.role) if traits.role else None
    if entry is None:
        raise UnresolvedRole(traits.role, table.known_roles())

    precompiled, dynamic, warnings = partition_skills(traits, entry, catalog)
    record = ConfigurationRecord(
        agent_id=agent_id,
        primary_prompt_set=entry.prompt_set,
        ending_prompt_set=entry.ending_prompt_set,
        output_format=entry.output_format,
        skills_precompiled=precompiled,
        skills_dynamic=dynamic,
    )
    return record, warnings


def load_record_schema() -> dict:
    with open(RECORD_SCHEMA_PATH, encoding="utf-8") as f:
        return json.load(f)


def validate_record(record: ConfigurationRecord | dict, schema: dict | None = None) -> dict:
    """Validate against the JSON schema; returns the record as a dict."""
    data = record.to_dict() if isinstance(record, ConfigurationRecord) else record
    try:
        jsonschema.validate(data, schema or load_record_schema())
    except jsonschema.ValidationError as e:
        raise InvalidConfigurationRecord(f"Record fails schema validation: {e.message}") from e
    return data
