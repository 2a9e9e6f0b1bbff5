"""Migration exceptions: structured error hierarchy.

Every fatal condition raised by the pipeline inherits from ``MigrationError``
so the CLI can catch the whole family per document and report the stage that
failed.

Hierarchy::

    MigrationError
      ├── PatternConfigError          ── patterns YAML is malformed
      ├── AmbiguousClassification     ── a block matches conflicting explicit rules
      ├── ContentLossSuspected        ── verification accounting falls short
      ├── UnresolvedRole              ── declared role has no decision-table entry
      ├── DecisionTableError          ── role table / skill catalog YAML is malformed
      ├── InvalidConfigurationRecord  ── derived record fails the JSON schema
      ├── DestinationExists           ── output directory already populated
      ├── RegistryConflict            ── agent already registered
      ├── RegistryError               ── registry file unreadable
      └── ArtifactWriteError          ── staging / promotion of artifacts failed

Unterminated sections are not exceptions: the tokenizer degrades them and
returns an ``UnterminatedSection`` warning record instead.
"""

from __future__ import annotations


class MigrationError(Exception):
    """Base exception for all migration failures."""

    stage = "migrate"


class PatternConfigError(MigrationError):
    """Raised when the migration patterns file cannot be used."""

    stage = "load-patterns"


class AmbiguousClassification(MigrationError):
    """Raised when explicit rules disagree about a block's category."""

    stage = "classify"

    def __init__(self, block_order: int, rule_names: list[str]):
        self.block_order = block_order
        self.rule_names = rule_names
        super().__init__(
            f"Block {block_order} matches conflicting rules: {', '.join(rule_names)}"
        )


class ContentLossSuspected(MigrationError):
    """Raised when re-read artifacts account for less content than the source.

    ``missing`` holds ``(block_order, start, end)`` tuples for the blocks whose
    cleaned text could not be found in their artifact.
    """

    stage = "verify"

    def __init__(self, shortfall: int, missing: list[tuple[int, int, int]], detail: str = ""):
        self.shortfall = shortfall
        self.missing = missing
        ranges = ", ".join(f"block {o} [{s}:{e}]" for o, s, e in missing) or "unattributed"
        msg = f"{shortfall} non-whitespace characters unaccounted for ({ranges})"
        if detail:
            msg += f"; {detail}"
        super().__init__(msg)


class UnresolvedRole(MigrationError):
    """Raised when the declared role cannot be mapped to prompt sets."""

    stage = "derive-config"

    def __init__(self, role: str | None, known_roles: list[str]):
        self.role = role
        self.known_roles = known_roles
        shown = role if role else "(none declared)"
        super().__init__(
            f"Unresolved role {shown!r}; known roles: {', '.join(known_roles)}"
        )


class DecisionTableError(MigrationError):
    """Raised when the role table or skill catalog data is invalid."""

    stage = "derive-config"


class InvalidConfigurationRecord(MigrationError):
    """Raised when a derived record does not match the record schema."""

    stage = "derive-config"


class DestinationExists(MigrationError):
    """Raised when the agent output directory exists and --force was not given."""

    stage = "write"

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Destination already exists: {path} (use --force to replace)")


class RegistryConflict(MigrationError):
    """Raised when the agent id is already present in the registry."""

    stage = "registry"

    def __init__(self, agent_id: str, registry_path: str):
        self.agent_id = agent_id
        self.registry_path = registry_path
        super().__init__(
            f"Agent '{agent_id}' already registered in {registry_path} (use --force to replace)"
        )


class ArtifactWriteError(MigrationError):
    """Raised when artifacts cannot be staged or promoted."""

    stage = "write"


class RegistryError(MigrationError):
    """Raised when the registry file cannot be read."""

    stage = "registry"
