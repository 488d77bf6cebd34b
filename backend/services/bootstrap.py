"""
Survey Review Hub - Service Wiring

Builds the object graph shared by the API and the scripts: record store,
principal directory, review service, statistics and importer.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

from .assignment import create_assignment_policy
from .clock import SystemClock
from .events import CompositeEventSink, InMemoryEventSink, LoggingEventSink
from .record_store import RecordStore
from .review_config import ReviewConfig
from .review_service import ReviewService
from .roles import InMemoryPrincipalDirectory, RoleResolver
from .sampling import RandomSource
from .statistics import StatisticsCacheInvalidator, StatisticsService
from .survey_import import SurveyImporter

logger = logging.getLogger(__name__)


_password_hasher = PasswordHasher()


def hash_password(password: str) -> str:
    """Argon2id hash; the salt is embedded in the returned string."""
    return _password_hasher.hash(password)


def verify_password(password_hash: str, password: str) -> bool:
    try:
        return _password_hasher.verify(password_hash, password)
    except (VerificationError, InvalidHashError):
        return False


@dataclass
class ReviewServices:
    config: ReviewConfig
    store: RecordStore
    directory: InMemoryPrincipalDirectory
    resolver: RoleResolver
    review: ReviewService
    statistics: StatisticsService
    importer: SurveyImporter
    recent_events: InMemoryEventSink
    # user_id -> argon2 hash of the password
    credentials: Dict[str, str] = field(default_factory=dict)


def build_review_services(
    config: ReviewConfig,
    store: RecordStore,
    directory: Optional[InMemoryPrincipalDirectory] = None,
    random_source: Optional[RandomSource] = None,
    clock: Optional[SystemClock] = None
) -> ReviewServices:
    directory = directory or InMemoryPrincipalDirectory()
    resolver = RoleResolver(directory)
    policy = create_assignment_policy(config.assignment_strategy, directory)
    statistics = StatisticsService(store, resolver, cache_ttl_seconds=config.stats_cache_ttl_seconds)

    recent_events = InMemoryEventSink(max_events=200)
    sink = CompositeEventSink([
        LoggingEventSink(),
        recent_events,
        StatisticsCacheInvalidator(statistics),
    ])

    review = ReviewService(
        store=store,
        resolver=resolver,
        assignment_policy=policy,
        config=config,
        event_sink=sink,
        random_source=random_source,
        clock=clock,
    )
    importer = SurveyImporter(store, policy, clock=clock)

    logger.info(
        "Review services ready (sampling=%d%%, assignment=%s, retries=%d)",
        config.sampling_percentage, config.assignment_strategy, config.max_conflict_retries
    )
    return ReviewServices(
        config=config,
        store=store,
        directory=directory,
        resolver=resolver,
        review=review,
        statistics=statistics,
        importer=importer,
        recent_events=recent_events,
    )


def load_principals(services: ReviewServices, user_docs: Iterable[Dict[str, Any]]) -> int:
    """
    Register users from stored documents:
    {"user_id", "role", "display_name", "is_administrator", "password_hash"}
    """
    count = 0
    for doc in user_docs:
        user_id = doc.get("user_id")
        if not user_id:
            continue
        try:
            services.directory.add_user(
                user_id,
                role=doc.get("role"),
                display_name=doc.get("display_name", ""),
                is_administrator=bool(doc.get("is_administrator")),
            )
        except ValueError as e:
            logger.warning("Skipping user %s: %s", user_id, e)
            continue
        if doc.get("password_hash"):
            services.credentials[user_id] = doc["password_hash"]
        count += 1
    logger.info("Loaded %d principals", count)
    return count
