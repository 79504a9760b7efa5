import logging
from datetime import datetime, timezone

from artycleaner.config import RepositoryPolicy
from artycleaner.models import Candidate, ImagePlan, KeepReason, PurgeDecision
from artycleaner.utils import is_excluded

NEVER_USED = datetime.min.replace(tzinfo=timezone.utc)


def last_used_key(candidate: Candidate) -> datetime:
    return candidate.last_used or NEVER_USED


def plan_image(
    image: str,
    candidates: list[Candidate],
    policy: RepositoryPolicy,
    cutoff: datetime | None,
) -> ImagePlan:
    """Split the tags of one docker image into kept and deleted ones.

    Tags excluded by pattern or used after ``cutoff`` are kept. When fewer than
    ``keep_tags`` remain, the most recently used of the others are kept as well.
    If the floor still cannot be met the image is left untouched.
    """
    kept: list[PurgeDecision] = []
    to_delete: list[Candidate] = []

    for candidate in candidates:
        if is_excluded(policy, image, candidate.name):
            logging.info(f"Image tag '{image}:{candidate.name}' will be excluded from purge")
            kept.append(PurgeDecision(candidate=candidate, keep=True, reason=KeepReason.EXCLUDED))
        elif candidate.is_fresh(cutoff):
            kept.append(PurgeDecision(candidate=candidate, keep=True, reason=KeepReason.FRESH))
        else:
            to_delete.append(candidate)

    tags_needed = policy.keep_tags - len(kept)
    if tags_needed > 0 and len(to_delete) > tags_needed:
        to_delete.sort(key=last_used_key, reverse=True)
        kept.extend(
            PurgeDecision(candidate=candidate, keep=True, reason=KeepReason.BACKFILLED)
            for candidate in to_delete[:tags_needed]
        )
        to_delete = to_delete[tags_needed:]

    decisions = kept + [PurgeDecision(candidate=c, keep=False) for c in to_delete]
    skipped = len(kept) < policy.keep_tags
    if skipped:
        logging.info(
            f"Skipping purge for image {image} - minimum number of tags to keep "
            f"not met ({len(kept)}/{policy.keep_tags})"
        )
    return ImagePlan(scope=image, decisions=decisions, skipped=skipped)


def plan_generic(
    repo_key: str, candidates: list[Candidate], policy: RepositoryPolicy
) -> ImagePlan:
    decisions = []
    for candidate in candidates:
        if is_excluded(policy, candidate.path):
            logging.info(f"File '{candidate.path}' will be excluded from purge")
            decisions.append(
                PurgeDecision(candidate=candidate, keep=True, reason=KeepReason.EXCLUDED)
            )
        else:
            decisions.append(PurgeDecision(candidate=candidate, keep=False))
    return ImagePlan(scope=repo_key, decisions=decisions)
