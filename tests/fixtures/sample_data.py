"""
Sample Data for Retrieval Tests

Builds content items with controlled embeddings so similarity scores in
tests are known in advance: a vector made by `vector_with_similarity(s)`
has cosine similarity `s` with `QUERY_VECTOR`.

Usage:
    from tests.fixtures.sample_data import make_item, vector_with_similarity

    item = make_item("mem_1", similarity=0.9, project_id="proj-billing")
"""

import math
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import numpy as np

from database.models import ContentItem, ContentType, ProjectRelationship

DIMENSIONS = 1536
NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
OWNER = "user-1"


def unit_vector(axis: int, dims: int = DIMENSIONS) -> np.ndarray:
    vec = np.zeros(dims, dtype=np.float64)
    vec[axis] = 1.0
    return vec


QUERY_VECTOR = unit_vector(0)


def vector_with_similarity(similarity: float, axis: int = 1, dims: int = DIMENSIONS) -> np.ndarray:
    """Unit vector whose cosine with QUERY_VECTOR is `similarity`."""
    vec = np.zeros(dims, dtype=np.float64)
    vec[0] = similarity
    vec[axis] = math.sqrt(max(0.0, 1.0 - similarity * similarity))
    return vec


def make_item(
    item_id: str,
    similarity: float = 0.9,
    owner_id: str = OWNER,
    content_type: ContentType = ContentType.KNOWLEDGE,
    title: Optional[str] = None,
    body: Optional[str] = None,
    project_id: Optional[str] = None,
    project_name: Optional[str] = None,
    age_days: float = 1.0,
    embedding: Optional[np.ndarray] = None,
    tags: Optional[List[str]] = None,
) -> ContentItem:
    """Content item created `age_days` before NOW."""
    return ContentItem(
        id=item_id,
        owner_id=owner_id,
        content_type=content_type,
        title=title or f"Note {item_id}",
        body=body or f"Body of {item_id}. " * 5,
        embedding=vector_with_similarity(similarity) if embedding is None else embedding,
        project_id=project_id,
        project_name=project_name,
        tags=tags or [],
        created_at=NOW - timedelta(days=age_days),
    )


# =============================================================================
# Sample Corpus
# =============================================================================

# (id, similarity to QUERY_VECTOR, type, project, age in days, title)
CORPUS = [
    ("mem_pricing", 0.95, ContentType.KNOWLEDGE, "proj-billing", 2, "Pricing decision record"),
    ("mem_invoice", 0.82, ContentType.EMAIL, "proj-billing", 10, "Invoice template thread"),
    ("mem_ledger", 0.78, ContentType.CONVERSATION, "proj-ledger", 5, "Ledger export discussion"),
    ("mem_offsite", 0.70, ContentType.CALENDAR, None, 40, "Team offsite planning"),
    ("mem_roadmap", 0.66, ContentType.FILE, "proj-roadmap", 120, "Roadmap slides"),
    ("mem_recipe", 0.20, ContentType.KNOWLEDGE, None, 3, "Banana bread recipe"),
]

PROJECT_NAMES = {
    "proj-billing": "Billing",
    "proj-ledger": "Ledger",
    "proj-roadmap": "Roadmap",
}

RELATIONSHIPS = [
    ProjectRelationship("proj-billing", "proj-ledger", "depends_on", 0.5, target_name="Ledger"),
    ProjectRelationship("proj-billing", "proj-roadmap", "similar", 0.25, target_name="Roadmap"),
]


def sample_corpus(owner_id: str = OWNER) -> List[ContentItem]:
    """The CORPUS rows as content items."""
    return [
        make_item(
            item_id,
            similarity=similarity,
            owner_id=owner_id,
            content_type=content_type,
            title=title,
            body=f"{title}. " + "Details about this item follow in the body text. " * 4,
            project_id=project_id,
            project_name=PROJECT_NAMES.get(project_id),
            age_days=age,
        )
        for item_id, similarity, content_type, project_id, age, title in CORPUS
    ]


SAMPLE_DOCUMENT = "\n\n".join([
    "Deployment runbook for the billing service. The service runs on three "
    "nodes behind the internal load balancer and is deployed every weekday "
    "morning after the integration suite passes on the release branch. "
    "Rollbacks use the previous container image tag recorded in the release log.",
    "Before deploying, confirm the ledger export job has finished. The export "
    "holds a lock on the invoices table for up to ten minutes, and migrations "
    "that touch the table will block until it is released. Check the job "
    "dashboard or ask in the billing channel when in doubt about its state.",
    "After deploying, watch error rates for fifteen minutes. If the rate of "
    "failed payment captures rises above one percent, roll back immediately "
    "and page the on-call engineer. Write a short incident note even when the "
    "rollback fixes the problem, so that patterns across releases stay visible.",
])
