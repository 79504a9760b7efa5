import asyncio
import logging
import sys

from artycleaner.cleaner import cleanup_artifactory
from artycleaner.config import Args, Config, load_config
from artycleaner.models import PurgeResult
from artycleaner.utils import init_logger


def report(result: PurgeResult) -> None:
    action = "would be deleted" if result.dry_run else "deleted"
    for repo in result.repositories:
        logging.info(
            f"Repository '{repo.key}': {repo.deleted_count} items {action}, "
            f"{repo.kept_count} kept, {len(repo.skipped_scopes)} images skipped, "
            f"{len(repo.errors)} errors"
        )
    errors = result.errors
    finish = f"Finished purge with {len(errors)} errors"
    if errors:
        logging.warning(finish)
        for error in errors:
            logging.warning(f"  {error}")
    else:
        logging.info(finish)


async def perform_cleanup(config: Config) -> PurgeResult:
    result = await cleanup_artifactory(config)
    report(result)
    return result


def main(argv: list[str] | None = None) -> int:
    args = Args.from_args(argv)
    config = load_config(args)
    init_logger(args)
    if config.args.dryrun:
        logging.warning("Running in dry-run mode, found artifacts will not be deleted")
    try:
        asyncio.run(perform_cleanup(config))
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
