#!/usr/bin/env python3
"""
Import a survey response export (JSON or CSV) into MongoDB as review records.

Usage:
    python scripts/import_responses.py export.json            # dry run
    python scripts/import_responses.py export.json --real
    python scripts/import_responses.py responses.csv --survey-id 836511 --real
"""

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path

from motor.motor_asyncio import AsyncIOMotorClient

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from services.assignment import create_assignment_policy
from services.record_store import MongoRecordStore
from services.review_config import ReviewConfig
from services.roles import InMemoryPrincipalDirectory
from services.survey_import import (
    CsvFileResponseSource,
    ImportJob,
    ImportMode,
    JsonFileResponseSource,
    SurveyImporter,
)


async def import_responses(path: str, survey_id: str = None, real: bool = False, limit: int = None):
    config = ReviewConfig.from_env()
    client = AsyncIOMotorClient(config.mongo_url)
    db = client[config.db_name]

    directory = InMemoryPrincipalDirectory()
    async for user in db.users.find({}, {"_id": 0}):
        if user.get("user_id"):
            directory.add_user(user["user_id"], role=user.get("role"), is_administrator=bool(user.get("is_administrator")))

    store = MongoRecordStore(db.survey_records)
    await store.ensure_indexes()

    if path.lower().endswith(".csv"):
        if not survey_id:
            raise SystemExit("--survey-id is required for CSV exports")
        source = CsvFileResponseSource(path, survey_id)
    else:
        source = JsonFileResponseSource(path)

    importer = SurveyImporter(store, create_assignment_policy(config.assignment_strategy, directory))
    job = ImportJob(source, importer, actor=os.environ.get("IMPORT_ACTOR", "import-script"))
    result = await job.run(
        mode=ImportMode.REAL if real else ImportMode.DRY_RUN,
        survey_filter=survey_id,
        limit=limit,
    )

    client.close()
    print(json.dumps(result.to_dict(), indent=2))
    return result


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Import survey responses for review")
    parser.add_argument("path", help="JSON or CSV export file")
    parser.add_argument("--survey-id", default=None, help="Survey id (required for CSV, filter for JSON)")
    parser.add_argument("--real", action="store_true", help="Write records (default is a dry run)")
    parser.add_argument("--limit", type=int, default=None)
    args = parser.parse_args()
    asyncio.run(import_responses(args.path, args.survey_id, args.real, args.limit))
