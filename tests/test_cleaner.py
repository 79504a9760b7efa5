import asyncio
import logging
from datetime import timedelta

from artycleaner.cleaner import cleanup_artifactory, purge_paths
from artycleaner.models import PackageType
from artycleaner.utils import true_utcnow

NOW = true_utcnow()


def days_ago(days: float):
    return NOW - timedelta(days=days)


def test_generic_repository_scenario(fake_artifactory, make_config):
    fake_artifactory.add_file("A", "x", days_ago(40))
    fake_artifactory.add_file("A", "y", days_ago(5))
    config = make_config({"A": {"purge_ttl": "30d"}})

    result = asyncio.run(cleanup_artifactory(config, fake_artifactory))

    assert fake_artifactory.deleted == [("A", "x")]
    assert result.repositories[0].package_type is PackageType.GENERIC
    assert result.repositories[0].deleted_count == 1
    assert result.errors == []
    assert fake_artifactory.closed


def test_docker_repository_scenario(fake_artifactory, make_config):
    fake_artifactory.add_docker_tag("docker-local", "app", "v1", created=days_ago(100))
    fake_artifactory.add_docker_tag("docker-local", "app", "v2", created=days_ago(90))
    fake_artifactory.add_docker_tag("docker-local", "app", "v3", created=days_ago(1))
    config = make_config({"docker-local": {"keep_tags": 2}}, defaults={"purge_ttl": "30d"})

    result = asyncio.run(cleanup_artifactory(config, fake_artifactory))

    assert fake_artifactory.deleted == [("docker-local", "app/v1")]
    repo = result.repositories[0]
    assert repo.kept_count == 2
    assert repo.deleted_count == 1
    assert repo.skipped_scopes == []


def test_docker_image_skipped_when_floor_not_met(fake_artifactory, make_config, caplog):
    fake_artifactory.add_docker_tag("docker-local", "app", "v1", created=days_ago(100))
    fake_artifactory.add_docker_tag("docker-local", "app", "v2", created=days_ago(90))
    fake_artifactory.add_docker_tag("docker-local", "web", "v1", created=days_ago(100))
    fake_artifactory.add_docker_tag("docker-local", "web", "v2", created=days_ago(90))
    fake_artifactory.add_docker_tag("docker-local", "web", "v3", created=days_ago(80))
    config = make_config({"docker-local": {"purge_ttl": "30d", "keep_tags": 2}})

    with caplog.at_level(logging.INFO):
        result = asyncio.run(cleanup_artifactory(config, fake_artifactory))

    assert fake_artifactory.deleted == [("docker-local", "web/v1")]
    assert result.repositories[0].skipped_scopes == ["app"]
    assert result.repositories[0].kept_count == 4
    assert "Skipping purge for image app" in caplog.text


def test_reserved_tag_is_never_a_candidate(fake_artifactory, make_config):
    fake_artifactory.add_docker_tag("docker-local", "app", "v1", created=days_ago(100))
    fake_artifactory.add_docker_tag("docker-local", "app", "_uploads", created=days_ago(100))
    config = make_config({"docker-local": {"purge_ttl": "1d"}})

    asyncio.run(cleanup_artifactory(config, fake_artifactory))

    assert fake_artifactory.deleted == [("docker-local", "app/v1")]


def test_dry_run_issues_no_deletes(fake_artifactory, make_config, caplog):
    fake_artifactory.add_file("A", "x", days_ago(40))
    fake_artifactory.add_docker_tag("docker-local", "app", "v1", created=days_ago(100))
    config = make_config({"A": None, "docker-local": None}, defaults={"purge_ttl": "30d"}, dryrun=True)

    with caplog.at_level(logging.WARNING):
        result = asyncio.run(cleanup_artifactory(config, fake_artifactory))

    assert fake_artifactory.delete_calls == []
    assert "Would've deleted A/x" in caplog.text
    assert "Would've deleted docker-local/app/v1" in caplog.text
    assert result.dry_run
    assert result.deleted_count == 2


def test_delete_failure_continues(fake_artifactory, make_config):
    for name in ("a", "b", "c"):
        fake_artifactory.add_file("A", name, days_ago(40))
    fake_artifactory.failing.add(("A", "b"))
    config = make_config({"A": {"purge_ttl": "30d"}})

    result = asyncio.run(cleanup_artifactory(config, fake_artifactory))

    assert fake_artifactory.delete_calls == [("A", "a"), ("A", "b"), ("A", "c")]
    assert fake_artifactory.deleted == [("A", "a"), ("A", "c")]
    assert len(result.errors) == 1
    assert "A/b" in result.errors[0]
    assert result.repositories[0].deleted_count == 2


def test_lookup_failure_skips_repository(fake_artifactory, make_config):
    fake_artifactory.add_file("A", "x", days_ago(40))
    config = make_config({"missing": None, "A": None}, defaults={"purge_ttl": "30d"})

    result = asyncio.run(cleanup_artifactory(config, fake_artifactory))

    assert fake_artifactory.deleted == [("A", "x")]
    assert [repo.key for repo in result.repositories] == ["missing", "A"]
    assert len(result.repositories[0].errors) == 1
    assert result.repositories[0].package_type is None


def test_collect_failure_skips_image(fake_artifactory, make_config):
    fake_artifactory.add_docker_tag("docker-local", "app", "v1", created=days_ago(100))
    fake_artifactory.add_docker_tag("docker-local", "web", "v1", created=days_ago(100))
    del fake_artifactory.stats[("docker-local", "app/v1/manifest.json")]
    config = make_config({"docker-local": {"purge_ttl": "30d"}})

    result = asyncio.run(cleanup_artifactory(config, fake_artifactory))

    assert fake_artifactory.deleted == [("docker-local", "web/v1")]
    assert len(result.errors) == 1


def test_no_ttl_deletes_nothing(fake_artifactory, make_config):
    fake_artifactory.add_file("A", "x", days_ago(4000))
    fake_artifactory.add_docker_tag("docker-local", "app", "v1")
    config = make_config({"A": None, "docker-local": {"purge_ttl": "not a duration"}})

    asyncio.run(cleanup_artifactory(config, fake_artifactory))

    assert fake_artifactory.delete_calls == []


def test_purge_paths_dry_run(fake_artifactory):
    errors = asyncio.run(purge_paths(fake_artifactory, "A", ["x", "y"], dry_run=True))
    assert errors == []
    assert fake_artifactory.delete_calls == []


def test_out_of_range_ttl_disables_purge_for_that_repository(fake_artifactory, make_config):
    fake_artifactory.add_file("A", "x", days_ago(40))
    fake_artifactory.add_file("B", "y", days_ago(40))
    config = make_config({"A": {"purge_ttl": "10000 years"}, "B": {"purge_ttl": "30d"}})

    result = asyncio.run(cleanup_artifactory(config, fake_artifactory))

    assert fake_artifactory.delete_calls == [("B", "y")]
    assert result.errors == []
