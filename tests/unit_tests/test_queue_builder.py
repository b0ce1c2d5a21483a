"""
Unit tests for queue building.
"""

import unittest

from config import DEFAULT_COMMIT_MESSAGE, RunConfig, SiteSelectors
from errors import ConfigError, EmptyResultError
from fleet import FleetResolver
from models import EnvironmentRef, SiteDescriptor
from queue_builder import (
    backup_element,
    build_job,
    build_queue,
    commit_message,
    deploy_targets,
)


def descriptor(name, team_member=False):
    return SiteDescriptor(
        id=f"id-{name}", name=name, framework="wordpress", team_member=team_member
    )


class TestSettingValues(unittest.TestCase):
    """Test normalization of individual setting values."""

    def test_backup_element(self):
        self.assertEqual(backup_element(True), "all")
        self.assertEqual(backup_element("db"), "db")
        self.assertIsNone(backup_element(False))
        self.assertIsNone(backup_element("none"))
        with self.assertRaises(ConfigError):
            backup_element("everything")

    def test_commit_message(self):
        self.assertEqual(commit_message(True), DEFAULT_COMMIT_MESSAGE)
        self.assertEqual(commit_message("Monthly updates"), "Monthly updates")
        self.assertIsNone(commit_message(False))

    def test_live_deploy_implies_test(self):
        """Test requesting live alone still deploys through test."""
        self.assertEqual(deploy_targets("live"), ("test", "live"))
        self.assertEqual(deploy_targets(True), ("test", "live"))
        self.assertEqual(deploy_targets("test"), ("test",))
        self.assertEqual(deploy_targets(False), ())

    def test_unknown_deploy_target(self):
        with self.assertRaises(ConfigError):
            deploy_targets("prod")


class TestBuildJob(unittest.TestCase):
    """Test turning resolved settings into a job spec."""

    def test_build_job(self):
        job = build_job(
            "shop",
            {
                "env": "dev",
                "framework": "wordpress",
                "backup": "all",
                "update": True,
                "packages": "akismet, jetpack",
                "exclude": ["hello-dolly"],
                "auto_commit": True,
                "auto_deploy": "test",
                "report": False,
                "notifications": {"error": ["ops"]},
            },
        )
        self.assertEqual(job.ref, EnvironmentRef(site="shop", env="dev"))
        self.assertEqual(job.name, "shop")
        self.assertEqual(job.backup, "all")
        self.assertEqual(job.packages, ("akismet", "jetpack"))
        self.assertEqual(job.exclude, frozenset({"hello-dolly"}))
        self.assertEqual(job.auto_commit, DEFAULT_COMMIT_MESSAGE)
        self.assertEqual(job.auto_deploy, ("test",))
        self.assertEqual(job.notifications, {"error": ("ops",)})
        self.assertFalse(job.report_only)

    def test_no_packages_means_all(self):
        job = build_job("shop", {"packages": None})
        self.assertIsNone(job.packages)


class TestBuildQueue(unittest.TestCase):
    """Test queue construction in both entry modes."""

    def file_config(self, sites, settings=None, exclude_sites=()):
        return RunConfig(
            mode="file",
            settings=settings or {},
            sites=tuple(sites),
            exclude_sites=tuple(exclude_sites),
            config_file="sites-config.yml",
        )

    def test_flag_mode_uses_resolver_order(self):
        config = RunConfig(mode="flags", settings={"env": "test", "exclude": ["a"]})
        queue = build_queue(config, [descriptor("b"), descriptor("a")])
        self.assertEqual([j.name for j in queue], ["b", "a"])
        self.assertTrue(all(j.ref.env == "test" for j in queue))

    def test_file_mode_merges_exclude_lists(self):
        """Test global and site excludes are merged into one set."""
        config = self.file_config(
            [{"name": "shop", "exclude": ["jetpack"]}],
            settings={"exclude": ["akismet"]},
        )
        queue = build_queue(config)
        self.assertEqual(queue[0].exclude, frozenset({"akismet", "jetpack"}))

    def test_file_mode_site_overrides_global(self):
        config = self.file_config(
            [{"name": "shop", "auto-deploy": "live"}, {"name": "blog"}],
            settings={"auto_deploy": False, "major_update": True},
        )
        shop, blog = build_queue(config)
        self.assertEqual(shop.auto_deploy, ("test", "live"))
        self.assertEqual(blog.auto_deploy, ())
        self.assertTrue(blog.major_update)

    def test_file_mode_skips_nameless_and_duplicate_entries(self):
        config = self.file_config(
            [{"name": "shop"}, {"env": "dev"}, {"name": "shop", "env": "live"}]
        )
        queue = build_queue(config)
        self.assertEqual(len(queue), 1)
        self.assertEqual(queue[0].ref.env, "dev")

    def test_file_mode_with_resolved_sites_keeps_listed_only(self):
        config = self.file_config([{"name": "shop"}, {"name": "blog"}])
        queue = build_queue(config, [descriptor("blog"), descriptor("other")])
        self.assertEqual([j.name for j in queue], ["blog"])

    def test_team_sites_with_site_commit_override(self):
        """Test resolved team sites get the global commit setting unless overridden."""
        inventory = [
            descriptor("shop", team_member=True),
            descriptor("other"),
            descriptor("blog", team_member=True),
        ]
        sites = FleetResolver(inventory).resolve(SiteSelectors(team_only=True))
        config = self.file_config(
            [{"name": "shop"}, {"name": "other"}, {"name": "blog", "auto_commit": True}],
            settings={"auto_commit": False},
        )

        shop, blog = build_queue(config, sites)

        self.assertEqual([shop.name, blog.name], ["shop", "blog"])
        self.assertIsNone(shop.auto_commit)
        self.assertEqual(blog.auto_commit, DEFAULT_COMMIT_MESSAGE)

    def test_exclude_sites(self):
        config = self.file_config(
            [{"name": "shop"}, {"name": "blog"}], exclude_sites=["shop"]
        )
        self.assertEqual([j.name for j in build_queue(config)], ["blog"])

    def test_empty_queue_raises(self):
        with self.assertRaises(EmptyResultError):
            build_queue(self.file_config([]))


if __name__ == "__main__":
    unittest.main()
