#!/usr/bin/env python3
"""
Agent Migration: CLI Tool

Decomposes monolithic agent prompt documents into five artifacts and derives
each agent's configuration record:

  tokenize -> classify -> strip -> assemble -> derive config
           -> write (staging) -> verify -> promote -> register

Tokenize, classify and derive errors abort before any file is written.
Artifacts are written to a staging directory next to the destination,
verified there, and promoted with a rename. A failed registry write rolls
the promoted directory back.

Usage:
  agent-migrate migrate SOURCE... --dest-root DIR [OPTIONS]
  agent-migrate validate AGENT_DIR [--registry PATH] [--skills-root DIR]
"""

from __future__ import annotations

import argparse
import json
import os
import re
import shutil
import sys
import tempfile
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from agent_migration.assemble_artifacts import Artifact, assemble_artifacts
from agent_migration.classify_blocks import (
    Category,
    Classification,
    classify_blocks,
    leading_paragraphs_as_intro,
)
from agent_migration.derive_config import (
    DecisionTable,
    SkillCatalog,
    derive_configuration,
    extract_traits,
    load_decision_table,
    load_skill_catalog,
    validate_record,
)
from agent_migration.errors import (
    ArtifactWriteError,
    ContentLossSuspected,
    DestinationExists,
    InvalidConfigurationRecord,
    MigrationError,
)
from agent_migration.patterns import MigrationPatterns, load_patterns
from agent_migration.registry import (
    DEFAULT_REGISTRY_NAME,
    build_registry_entry,
    check_conflict,
    load_registry,
    registered_agents,
    write_registry,
)
from agent_migration.strip_infrastructure import Removal, strip_blocks
from agent_migration.tokenize_blocks import Block, MigrationWarning, tokenize_document
from agent_migration.verify_artifacts import (
    SUSPECT_MARKER,
    VerificationReport,
    check_block_partition,
    validate_agent_dir,
    verify_artifacts,
)

MANIFEST_NAME = "discard-manifest.json"
AGENT_ID_RE = re.compile(r"^[a-z0-9][a-z0-9._-]*$")


# ─── Output helpers ─────────────────────────────────────────────────────────

def abort(msg):
    """Print error and exit."""
    print(f"ERROR: {msg}", file=sys.stderr)
    sys.exit(1)


def warn(msg):
    """Print warning to stderr."""
    print(f"WARNING: {msg}", file=sys.stderr)


def info(msg):
    """Print info to stdout."""
    print(msg)


# ─── Data classes ────────────────────────────────────────────────────────────

@dataclass
class MigrationPlan:
    """Everything computed for one document before any file is written."""
    source: str
    agent_id: str
    source_text: str
    blocks: list[Block]                  # stripped blocks (clean_text set)
    classification: Classification
    removals: list[Removal]
    artifacts: dict[Category, Artifact]
    record: dict
    warnings: list[MigrationWarning] = field(default_factory=list)


@dataclass
class MigrationResult:
    source: str
    agent_id: str | None = None
    plan: MigrationPlan | None = None
    agent_dir: Path | None = None
    backup_dir: Path | None = None
    report: VerificationReport | None = None
    error: MigrationError | None = None
    suspect: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


# ─── Pipeline ───────────────────────────────────────────────────────────────

def normalize_agent_id(value: str) -> str:
    """Lowercase, and replace runs of characters outside [a-z0-9._-] with '-'."""
    agent_id = re.sub(r"[^a-z0-9._-]+", "-", value.strip().lower()).strip("-._")
    if not AGENT_ID_RE.match(agent_id):
        raise InvalidConfigurationRecord(f"Cannot derive an agent id from {value!r}")
    return agent_id


def migrate_text(
    text: str,
    patterns: MigrationPatterns,
    table: DecisionTable,
    catalog: SkillCatalog,
    source: str = "<text>",
    agent_id: str | None = None,
    role: str | None = None,
    domain: str | None = None,
    intro_fallback=leading_paragraphs_as_intro,
) -> MigrationPlan:
    """Run every in-memory stage for one document. Performs no I/O."""
    tokens = tokenize_document(text, patterns)
    check_block_partition(tokens.blocks, text)
    classification = classify_blocks(tokens.blocks, patterns, intro_fallback=intro_fallback)
    blocks, removals = strip_blocks(tokens.blocks, classification, patterns)
    artifacts = assemble_artifacts(blocks, classification, patterns)

    traits, trait_warnings = extract_traits(tokens.blocks, role=role, domain=domain)
    resolved_id = normalize_agent_id(agent_id or traits.agent_name or Path(source).stem)
    record, config_warnings = derive_configuration(traits, table, catalog, resolved_id)
    record_dict = validate_record(record)

    return MigrationPlan(
        source=source,
        agent_id=resolved_id,
        source_text=text,
        blocks=blocks,
        classification=classification,
        removals=removals,
        artifacts=artifacts,
        record=record_dict,
        warnings=list(tokens.warnings) + trait_warnings + config_warnings,
    )


def plan_migration(source_path: str | Path, patterns, table, catalog, **kwargs) -> MigrationPlan:
    source_path = Path(source_path)
    text = source_path.read_text(encoding="utf-8")
    return migrate_text(text, patterns, table, catalog, source=str(source_path), **kwargs)


def build_discard_manifest(plan: MigrationPlan) -> dict:
    """Audit trail: every stripped line and discarded block, plus warnings."""
    cls = plan.classification
    return {
        "source": plan.source,
        "agent_id": plan.agent_id,
        "removals": [
            {"block_order": r.block_order, "rule": r.rule, "text": r.text}
            for r in plan.removals
        ],
        "discarded_blocks": [
            {
                "block_order": b.order,
                "rule": cls.rule_names[b.order],
                "start": b.start,
                "end": b.end,
                "text": b.raw_text,
            }
            for b in cls.blocks_in(plan.blocks, Category.DISCARD)
        ],
        "blocks": [
            {
                "order": b.order,
                "kind": b.kind.value,
                "category": cls.category_of(b).value,
                "rule": cls.rule_names[b.order],
                "start": b.start,
                "end": b.end,
            }
            for b in plan.blocks
        ],
        "warnings": [
            {"code": w.code, "message": w.message, "block_order": w.block_order}
            for w in plan.warnings
        ],
    }


def write_artifacts(plan: MigrationPlan, target_dir: Path, write_manifest: bool = True):
    for artifact in plan.artifacts.values():
        (target_dir / artifact.filename).write_text(artifact.content, encoding="utf-8")
    if write_manifest:
        with open(target_dir / MANIFEST_NAME, "w", encoding="utf-8") as f:
            json.dump(build_discard_manifest(plan), f, ensure_ascii=False, indent=2)
            f.write("\n")


def promote(staging_dir: Path, agent_dir: Path) -> Path | None:
    """Rename staging into place. Returns the backup of a replaced directory."""
    backup_dir = None
    if agent_dir.exists():
        backup_dir = agent_dir.with_name(f".{agent_dir.name}.backup-{os.getpid()}")
        if backup_dir.exists():
            shutil.rmtree(backup_dir)
        os.replace(agent_dir, backup_dir)
    try:
        os.replace(staging_dir, agent_dir)
    except OSError:
        if backup_dir is not None:
            os.replace(backup_dir, agent_dir)
        raise
    return backup_dir


def rollback(agent_dir: Path, backup_dir: Path | None):
    """Remove a promoted directory and restore what it replaced."""
    if agent_dir.exists():
        shutil.rmtree(agent_dir)
    if backup_dir is not None and backup_dir.exists():
        os.replace(backup_dir, agent_dir)


def stage_and_verify(
    plan: MigrationPlan,
    dest_root: str | Path,
    patterns: MigrationPatterns,
    force: bool = False,
    keep_suspect: bool = False,
    write_manifest: bool = True,
) -> MigrationResult:
    """Write to staging, verify, promote. Raises on any failure.

    With ``keep_suspect`` a failed verification still promotes the directory,
    adds a SUSPECT file, and re-raises ContentLossSuspected.
    """
    dest_root = Path(dest_root)
    agent_dir = dest_root / plan.agent_id
    if agent_dir.exists() and not force:
        raise DestinationExists(str(agent_dir))

    try:
        dest_root.mkdir(parents=True, exist_ok=True)
        staging_dir = Path(tempfile.mkdtemp(dir=str(dest_root), prefix=f".{plan.agent_id}.staging-"))
    except OSError as e:
        raise ArtifactWriteError(f"Cannot create staging directory in {dest_root}: {e}") from e

    result = MigrationResult(source=plan.source, agent_id=plan.agent_id, plan=plan)
    try:
        write_artifacts(plan, staging_dir, write_manifest)
        try:
            result.report = verify_artifacts(
                staging_dir, plan.source_text, plan.blocks,
                plan.classification, plan.removals, patterns,
            )
        except ContentLossSuspected as e:
            if not keep_suspect:
                raise
            (staging_dir / SUSPECT_MARKER).write_text(f"{e}\n", encoding="utf-8")
            result.agent_dir = agent_dir
            backup_dir = promote(staging_dir, agent_dir)
            if backup_dir is not None:
                shutil.rmtree(backup_dir)
            result.suspect = True
            raise
        plan.warnings.extend(result.report.warnings)
        result.backup_dir = promote(staging_dir, agent_dir)
        result.agent_dir = agent_dir
    except OSError as e:
        raise ArtifactWriteError(f"Writing artifacts for {plan.agent_id} failed: {e}") from e
    finally:
        if staging_dir.exists():
            shutil.rmtree(staging_dir)
    return result


def commit(result: MigrationResult, registry_data: dict | None, registry_path: Path) -> dict:
    """Register the record; on failure roll the promoted directory back."""
    try:
        registry_data = write_registry(
            registry_data, registry_path, build_registry_entry(result.plan.record)
        )
    except Exception:
        rollback(result.agent_dir, result.backup_dir)
        raise
    if result.backup_dir is not None and result.backup_dir.exists():
        shutil.rmtree(result.backup_dir)
    result.backup_dir = None
    return registry_data


# ─── Reporting ──────────────────────────────────────────────────────────────

def print_plan(plan: MigrationPlan):
    counts = plan.classification.counts()
    info(f"\n── {plan.source} -> {plan.agent_id} ──")
    info(f"  Blocks: {len(plan.blocks)}")
    for category, count in counts.items():
        info(f"    {category.value:<22} {count}")
    placeholders = [a.filename for a in plan.artifacts.values() if a.is_placeholder]
    if placeholders:
        info(f"  Placeholders: {', '.join(placeholders)}")
    info(f"  Stripped lines: {len(plan.removals)}")
    info("  Configuration record:")
    dumped = yaml.dump(plan.record, allow_unicode=True, default_flow_style=False, sort_keys=False)
    for line in dumped.rstrip().splitlines():
        info(f"    {line}")


def report_failure(source: str, error: MigrationError):
    info(f"  ❌ {source}: failed at stage '{error.stage}': {error}")


# ─── Commands ───────────────────────────────────────────────────────────────

def _plan_one(source, patterns, table, catalog, args) -> MigrationResult:
    try:
        plan = plan_migration(
            source, patterns, table, catalog,
            agent_id=args.agent_id, role=args.role, domain=args.domain,
        )
    except MigrationError as e:
        return MigrationResult(source=str(source), error=e)
    except (OSError, UnicodeDecodeError) as e:
        err = MigrationError(f"Cannot read source: {e}")
        err.stage = "read"
        return MigrationResult(source=str(source), error=err)
    return MigrationResult(source=str(source), agent_id=plan.agent_id, plan=plan)


def _stage_one(result: MigrationResult, dest_root, patterns, args) -> MigrationResult:
    try:
        staged = stage_and_verify(
            result.plan, dest_root, patterns,
            force=args.force, keep_suspect=args.keep_suspect,
            write_manifest=not args.no_manifest,
        )
    except MigrationError as e:
        result.error = e
        result.suspect = isinstance(e, ContentLossSuspected) and args.keep_suspect
        return result
    result.agent_dir = staged.agent_dir
    result.backup_dir = staged.backup_dir
    result.report = staged.report
    return result


def cmd_migrate(args) -> int:
    sources = [Path(s) for s in args.sources]
    if args.agent_id and len(sources) > 1:
        abort("--agent-id can only be used with a single source document")
    missing = [str(s) for s in sources if not s.is_file()]
    if missing:
        abort(f"Source not found: {', '.join(missing)}")

    dest_root = Path(args.dest_root).resolve()
    registry_path = Path(args.registry).resolve() if args.registry else dest_root / DEFAULT_REGISTRY_NAME

    info("=" * 60)
    info("Agent Migration")
    info("=" * 60)

    try:
        patterns = load_patterns(args.patterns)
        table = load_decision_table(args.roles)
        catalog = load_skill_catalog(args.catalog)
        registry_data = load_registry(registry_path)
    except MigrationError as e:
        abort(f"{e.stage}: {e}")

    jobs = max(1, args.jobs)
    with ThreadPoolExecutor(max_workers=jobs) as pool:
        results = list(pool.map(lambda s: _plan_one(s, patterns, table, catalog, args), sources))

    # Conflicts are decided before anything is written.
    seen: dict[str, str] = {}
    for result in results:
        if not result.ok:
            continue
        if result.agent_id in seen:
            err = MigrationError(f"Agent id '{result.agent_id}' also produced by {seen[result.agent_id]}")
            err.stage = "registry"
            result.error = err
            continue
        seen[result.agent_id] = result.source
        try:
            check_conflict(registry_data, result.agent_id, registry_path, force=args.force)
        except MigrationError as e:
            result.error = e

    for result in results:
        if result.plan is not None:
            print_plan(result.plan)
        for w in result.plan.warnings if result.plan else []:
            warn(f"{result.source}: [{w.code}] {w.message}")
        if not result.ok:
            report_failure(result.source, result.error)

    if args.dry_run:
        info("\nDRY RUN complete. No files written.")
        return 0 if all(r.ok for r in results) else 1

    info("\n── Writing outputs ──")
    pending = [r for r in results if r.ok]
    with ThreadPoolExecutor(max_workers=jobs) as pool:
        list(pool.map(lambda r: _stage_one(r, dest_root, patterns, args), pending))

    for result in pending:
        if not result.ok:
            report_failure(result.source, result.error)
            if result.suspect:
                warn(f"Kept suspect output: {dest_root / result.agent_id}/ (see {SUSPECT_MARKER})")
            continue
        for w in result.report.warnings:
            warn(f"{result.source}: [{w.code}] {w.message}")
        try:
            registry_data = commit(result, registry_data, registry_path)
        except Exception as e:
            warn(f"Rolled back: {result.agent_dir}/")
            err = e if isinstance(e, MigrationError) else MigrationError(f"Registry write failed: {e}")
            if not isinstance(e, MigrationError):
                err.stage = "registry"
            result.error = err
            report_failure(result.source, err)
            continue
        info(f"  ✓ {result.source} -> {result.agent_dir}/")

    failed = [r for r in results if not r.ok]
    info("\n" + "=" * 60)
    info(f"Migrated: {len(results) - len(failed)}  Failed: {len(failed)}")
    if len(failed) < len(results):
        info(f"Registry: {registry_path}")
    info("=" * 60)
    return 1 if failed else 0


def cmd_validate(args) -> int:
    agent_dir = Path(args.agent_dir)
    try:
        patterns = load_patterns(args.patterns)
        registry_data = load_registry(args.registry) if args.registry else None
    except MigrationError as e:
        abort(f"{e.stage}: {e}")

    record = None
    if args.registry:
        record = registered_agents(registry_data).get(agent_dir.name)
        if record is None:
            warn(f"Agent '{agent_dir.name}' not found in {args.registry}")

    result = validate_agent_dir(agent_dir, patterns, record=record, skills_root=args.skills_root)
    info(f"Validating: {agent_dir}")
    info(result.summary())
    return 0 if result.ok else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agent-migrate",
        description="Decompose monolithic agent prompts into artifacts and configuration records.",
    )
    subparsers = parser.add_subparsers(dest="command", help="Sub-command")

    mig = subparsers.add_parser("migrate", help="Migrate one or more source documents")
    mig.add_argument("sources", nargs="+", metavar="SOURCE", help="Monolithic agent document(s)")
    mig.add_argument("--dest-root", required=True, help="Directory receiving <agent-id>/ folders")
    mig.add_argument("--registry", help=f"Registry YAML (default: <dest-root>/{DEFAULT_REGISTRY_NAME})")
    mig.add_argument("--agent-id", help="Agent id (default: frontmatter name, else file stem)")
    mig.add_argument("--role", help="Override the declared role")
    mig.add_argument("--domain", help="Override the declared domain")
    mig.add_argument("--patterns", help="Migration patterns YAML")
    mig.add_argument("--roles", help="Role decision table YAML")
    mig.add_argument("--catalog", help="Skill catalog YAML")
    mig.add_argument("--jobs", type=int, default=1, metavar="N", help="Documents migrated in parallel")
    mig.add_argument("--dry-run", action="store_true", help="Classify and preview without writing")
    mig.add_argument("--force", action="store_true", help="Replace existing output and registry entry")
    mig.add_argument("--keep-suspect", action="store_true",
                     help="Keep output that fails verification, flagged with a SUSPECT file")
    mig.add_argument("--no-manifest", action="store_true", help=f"Do not write {MANIFEST_NAME}")
    mig.set_defaults(func=cmd_migrate)

    val = subparsers.add_parser("validate", help="Check an already-migrated agent directory")
    val.add_argument("agent_dir", metavar="AGENT_DIR")
    val.add_argument("--registry", help="Registry YAML holding the agent's record")
    val.add_argument("--skills-root", help="Directory skill paths are relative to")
    val.add_argument("--patterns", help="Migration patterns YAML")
    val.set_defaults(func=cmd_validate)
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        sys.exit(1)
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
