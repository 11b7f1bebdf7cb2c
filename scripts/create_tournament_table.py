#!/usr/bin/env python3
"""Create the DynamoDB table the bot stores tournaments and matches in.

The table uses string keys ``pk``/``sk`` plus a global secondary index on
``event_id`` so matches can be listed per event:

  - pk="TOURNAMENT#<id>", sk="TOURNAMENT"      tournament
  - pk="TOURNAMENT#<id>", sk="EVENT#<id>"      event
  - pk="TOURNAMENT#<id>", sk="ENTRANT#<id>"    entrant -> Discord member link
  - pk="TOURNAMENT#<id>", sk="POLL_LEASE"      cross-process poll lease
  - pk="MATCH#<id>",      sk="MATCH"           match with both players

Typical usage (dry-run):

    python scripts/create_tournament_table.py --table FightRiseTournaments

Create the table after reviewing the dry-run output:

    python scripts/create_tournament_table.py --table FightRiseTournaments --execute
"""

from __future__ import annotations

import argparse
import logging
from typing import Any

import boto3
from botocore.exceptions import ClientError

from fightrise.models import Match

log = logging.getLogger(__name__)


def table_definition(table_name: str) -> dict[str, Any]:
    return {
        "TableName": table_name,
        "BillingMode": "PAY_PER_REQUEST",
        "AttributeDefinitions": [
            {"AttributeName": "pk", "AttributeType": "S"},
            {"AttributeName": "sk", "AttributeType": "S"},
            {"AttributeName": "event_id", "AttributeType": "S"},
        ],
        "KeySchema": [
            {"AttributeName": "pk", "KeyType": "HASH"},
            {"AttributeName": "sk", "KeyType": "RANGE"},
        ],
        "GlobalSecondaryIndexes": [
            {
                "IndexName": Match.EVENT_INDEX,
                "KeySchema": [{"AttributeName": "event_id", "KeyType": "HASH"}],
                "Projection": {"ProjectionType": "ALL"},
            }
        ],
    }


def create_table(
    table_name: str,
    *,
    profile: str | None,
    region: str | None,
    dry_run: bool,
    dynamodb_resource=None,
) -> bool:
    definition = table_definition(table_name)
    if dry_run:
        log.info("Would create table %s with definition %s", table_name, definition)
        log.info("Dry run complete. Re-run with --execute to create the table.")
        return False

    if dynamodb_resource is None:
        session_kwargs = {"profile_name": profile} if profile else {}
        session = boto3.Session(**session_kwargs)
        dynamodb_resource = session.resource("dynamodb", region_name=region)
    try:
        table = dynamodb_resource.create_table(**definition)
    except ClientError as exc:
        if exc.response.get("Error", {}).get("Code") == "ResourceInUseException":
            log.info("Table %s already exists; nothing to do", table_name)
            return False
        raise
    table.wait_until_exists()
    log.info("Created table %s", table_name)
    return True


def main() -> None:
    parser = argparse.ArgumentParser(description="Create the tournament table")
    parser.add_argument("--table", required=True, help="DynamoDB table name")
    parser.add_argument(
        "--profile",
        default=None,
        help="Optional AWS profile name for boto3",
    )
    parser.add_argument(
        "--region",
        default=None,
        help="AWS region (defaults to the boto3 session region)",
    )
    parser.add_argument(
        "--execute",
        action="store_true",
        help="Create the table. Without this flag the script performs a dry run.",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(message)s")
    create_table(
        args.table,
        profile=args.profile,
        region=args.region,
        dry_run=not args.execute,
    )


if __name__ == "__main__":
    main()
