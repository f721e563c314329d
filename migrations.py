"""
Template schema migrations.

Each step is an idempotent delta function from composition.py, keyed by the
schema version it introduces. A template is upgraded by running every step
in order and stamping ``schema_version``; documents that were already
upgraded by older presence-of-key scripts simply yield empty deltas.

Writes are guarded by the template's ``revision`` counter: the update only
matches the revision that was read, and bumps it. A template edited in
between is re-read and migrated again.

Run as ``portfolio-migrate [--dry-run]`` or ``python migrations.py``.
"""
import argparse
import logging
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from pymongo.database import Database

from composition import TemplateDelta, apply_delta, enhance, merge_structural_defaults
from config import Settings
from database import TEMPLATES, connect, ensure_indexes, get_database, utcnow
from errors import ConflictError, NotFoundError

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3


@dataclass(frozen=True)
class MigrationStep:
    version: int
    name: str
    apply: Callable[[Dict[str, Any]], TemplateDelta]


STEPS = (
    MigrationStep(1, "structural", merge_structural_defaults),
    MigrationStep(2, "enhancement", enhance),
)
LATEST_SCHEMA_VERSION = STEPS[-1].version


@dataclass
class MigrationOutcome:
    template_id: str
    status: str  # "updated" | "unchanged"
    delta: TemplateDelta
    steps: List[str] = field(default_factory=list)
    attempts: int = 1

    @property
    def changed(self) -> bool:
        return self.status == "updated"


@dataclass
class MigrationReport:
    processed: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0
    failures: List[str] = field(default_factory=list)
    dry_run: bool = False


def upgrade(template: Dict[str, Any]) -> Tuple[Dict[str, Any], TemplateDelta, List[str]]:
    """Run all steps on an in-memory template.

    Returns the upgraded template, the combined delta (including the
    ``schema_version`` stamp when it moves) and the names of the steps that
    changed something.
    """
    current = template
    combined = TemplateDelta()
    applied = []
    for step in STEPS:
        delta = step.apply(current)
        if delta.is_empty:
            continue
        current = apply_delta(current, delta)
        combined = combined.merge(delta)
        applied.append(step.name)

    if (template.get("schema_version") or 0) < LATEST_SCHEMA_VERSION:
        combined.changes["schema_version"] = LATEST_SCHEMA_VERSION
        current = {**current, "schema_version": LATEST_SCHEMA_VERSION}
    return current, combined, applied


def migrate_template(db: Database, template: Dict[str, Any], dry_run: bool = False) -> MigrationOutcome:
    template_id = str(template["_id"])
    for attempt in range(1, MAX_ATTEMPTS + 1):
        _, delta, applied = upgrade(template)
        if delta.is_empty:
            return MigrationOutcome(template_id, "unchanged", delta, attempts=attempt)
        if dry_run:
            return MigrationOutcome(template_id, "updated", delta, applied, attempts=attempt)

        # None matches a missing field, which counts as revision 0.
        read_revision = template.get("revision")
        result = db[TEMPLATES].update_one(
            {"_id": template["_id"], "revision": read_revision},
            {"$set": {**delta.changes, "updated_at": utcnow()}, "$inc": {"revision": 1}},
        )
        if result.matched_count:
            return MigrationOutcome(template_id, "updated", delta, applied, attempts=attempt)

        logger.warning("Template %s changed while migrating (attempt %d/%d)", template_id, attempt, MAX_ATTEMPTS)
        template = db[TEMPLATES].find_one({"_id": template["_id"]})
        if template is None:
            raise NotFoundError(f"Template {template_id} was deleted during migration")

    raise ConflictError(f"Template {template_id} kept changing during migration")


def run_migration(db: Database, dry_run: bool = False) -> MigrationReport:
    report = MigrationReport(dry_run=dry_run)
    ids = [doc["_id"] for doc in db[TEMPLATES].find({}, {"_id": 1}).sort("_id", 1)]
    logger.info("Migrating %d templates to schema version %d", len(ids), LATEST_SCHEMA_VERSION)

    for template_id in ids:
        report.processed += 1
        try:
            template = db[TEMPLATES].find_one({"_id": template_id})
            if template is None:
                raise NotFoundError(f"Template {template_id} was deleted during migration")
            outcome = migrate_template(db, template, dry_run=dry_run)
        except Exception:
            # One bad template must not stop the batch.
            logger.exception("Failed to migrate template %s", template_id)
            report.failed += 1
            report.failures.append(str(template_id))
            continue

        if outcome.changed:
            report.updated += 1
            logger.info("Template %s (%s): %s, added %s", template_id, template.get("name"),
                        ", ".join(outcome.steps) or "version stamp", outcome.delta.added)
        else:
            report.unchanged += 1
            logger.info("Template %s (%s): up to date", template_id, template.get("name"))

    logger.info(
        "Migration %s: %d processed, %d updated, %d unchanged, %d failed",
        "dry run finished" if dry_run else "finished",
        report.processed, report.updated, report.unchanged, report.failed,
    )
    return report


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Upgrade stored templates to the latest schema version")
    parser.add_argument("--dry-run", action="store_true", help="Report what would change without writing")
    parser.add_argument("--database-url", help="MongoDB connection string (defaults to DATABASE_URL)")
    parser.add_argument("--database-name", help="Database name (defaults to DATABASE_NAME)")
    args = parser.parse_args(argv)

    settings = Settings()
    if args.database_url:
        settings.database_url = args.database_url
    if args.database_name:
        settings.database_name = args.database_name

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    client = connect(settings)
    try:
        db = get_database(client, settings)
        if not args.dry_run:
            ensure_indexes(db)
        report = run_migration(db, dry_run=args.dry_run)
    finally:
        client.close()
    return 1 if report.failed else 0


if __name__ == "__main__":
    sys.exit(main())
