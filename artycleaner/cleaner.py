import logging
from datetime import datetime

from artycleaner.client import ArtifactoryClient, ArtifactoryError
from artycleaner.collector import collector_for
from artycleaner.config import Config, RepositoryPolicy
from artycleaner.engine import plan_generic, plan_image
from artycleaner.models import (
    Candidate,
    ImagePlan,
    PackageType,
    PurgeResult,
    RepositoryResult,
)
from artycleaner.utils import true_utcnow


async def purge_paths(
    client: ArtifactoryClient, repo_key: str, paths: list[str], dry_run: bool
) -> list[str]:
    errors = []
    for path in paths:
        if dry_run:
            logging.warning(f"Would've deleted {repo_key}/{path}")
            continue
        logging.warning(f"Deleting {repo_key}/{path}")
        try:
            await client.delete_file(repo_key, path)
        except ArtifactoryError as err:
            error = f"Error deleting {repo_key}/{path}. {err}"
            logging.error(error)
            errors.append(error)
    return errors


def make_plan(
    package_type: PackageType,
    scope: str,
    candidates: list[Candidate],
    policy: RepositoryPolicy,
    cutoff: datetime | None,
) -> ImagePlan:
    if package_type is PackageType.DOCKER:
        return plan_image(scope, candidates, policy, cutoff)
    return plan_generic(scope, candidates, policy)


async def cleanup_repository(
    client: ArtifactoryClient,
    repo_key: str,
    policy: RepositoryPolicy,
    dry_run: bool,
) -> RepositoryResult:
    result = RepositoryResult(key=repo_key)
    logging.info(f"Processing repository [{repo_key}]")

    try:
        repo_info = await client.lookup_repository(repo_key)
    except ArtifactoryError as err:
        error = f"Error looking up repository {repo_key}. {err}"
        logging.error(error)
        result.errors.append(error)
        return result

    result.package_type = repo_info.package_type
    cutoff = policy.cutoff(true_utcnow())
    logging.info(f"Repository configuration [{policy.describe()}]")
    logging.info(
        f"Repository {repo_key} has package type '{repo_info.raw_package_type}', "
        f"purge cutoff: {cutoff.isoformat() if cutoff else 'never'}"
    )

    collector = collector_for(repo_info.package_type, client, repo_key, cutoff)
    try:
        scopes = await collector.scopes()
    except ArtifactoryError as err:
        error = f"Error listing repository {repo_key}. {err}"
        logging.error(error)
        result.errors.append(error)
        return result

    for scope in scopes:
        if repo_info.package_type is PackageType.DOCKER:
            logging.info(f"Processing image [{scope}]")
        try:
            candidates = await collector.collect(scope)
        except ArtifactoryError as err:
            error = f"Error collecting candidates for {repo_key}/{scope}. {err}"
            logging.error(error)
            result.errors.append(error)
            continue

        plan = make_plan(repo_info.package_type, scope, candidates, policy, cutoff)
        if plan.skipped:
            result.kept_count += len(plan.decisions)
            result.skipped_scopes.append(scope)
            continue
        result.kept_count += len(plan.to_keep)

        to_delete = plan.to_delete
        if not to_delete:
            logging.info(f"Nothing to delete for {repo_key}/{scope}")
            continue

        if plan.to_keep:
            logging.debug(f"The following items will be kept: {', '.join(plan.to_keep)}")
        logging.debug(f"The following items will be deleted: {', '.join(to_delete)}")
        errors = await purge_paths(client, repo_key, to_delete, dry_run)
        result.errors.extend(errors)
        result.deleted_count += len(to_delete) - len(errors)

    return result


async def cleanup_artifactory(
    config: Config, client: ArtifactoryClient | None = None
) -> PurgeResult:
    result = PurgeResult(dry_run=config.args.dryrun, started_at=true_utcnow())
    logging.info(f"Default configuration: [{config.default_policy.describe()}]")

    async with client or ArtifactoryClient(config.api) as session:
        for repo_key, policy in config.policies.items():
            result.repositories.append(
                await cleanup_repository(session, repo_key, policy, config.args.dryrun)
            )

    result.finished_at = true_utcnow()
    return result
