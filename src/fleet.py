"""
Fleet inventory and site selection.
"""

import json
import logging
import os
import re
from typing import Dict, List, Optional

from clients import PantheonRestClient
from config import SiteSelectors
from errors import ConfigError, EmptyResultError
from models import Membership, SiteDescriptor

logger = logging.getLogger(__name__)

CACHE_PATH = os.path.join(
    os.path.expanduser("~"), ".cache", "pantheon-fleet-update", "sites.json"
)


def _descriptor(site: Dict, membership: Membership, team_member: bool) -> SiteDescriptor:
    return SiteDescriptor(
        id=site["id"],
        name=site["name"],
        framework=site.get("framework", ""),
        owner=site.get("owner"),
        memberships=(membership,),
        team_member=team_member,
    )


class SiteInventory:
    """Every site the authenticated user can reach, with a local cache."""

    def __init__(self, client: PantheonRestClient, cache_path: str = CACHE_PATH):
        self.client = client
        self.cache_path = cache_path

    def fetch(self) -> List[SiteDescriptor]:
        """
        Fetch the inventory from the API: team sites first, then the sites of
        each organization the user belongs to.

        Returns:
            Sites in fetch order, one entry per site with all memberships merged
        """
        sites: Dict[str, SiteDescriptor] = {}

        def add(descriptor: SiteDescriptor) -> None:
            known = sites.get(descriptor.id)
            if known is None:
                sites[descriptor.id] = descriptor
                return
            sites[descriptor.id] = SiteDescriptor(
                id=known.id,
                name=known.name,
                framework=known.framework,
                owner=known.owner,
                memberships=known.memberships + descriptor.memberships,
                team_member=known.team_member or descriptor.team_member,
            )

        for item in self.client.list_team_sites():
            site = item.get("site", item)
            add(_descriptor(site, Membership(id=self.client.user_id, type="team"), True))

        for item in self.client.list_organizations():
            org = item.get("organization", item)
            org_id = org["id"]
            try:
                org_sites = self.client.list_organization_sites(org_id)
            except RuntimeError as e:
                logger.warning(f"Cannot list sites of organization {org_id}: {e}")
                continue
            for org_item in org_sites:
                site = org_item.get("site", org_item)
                add(_descriptor(site, Membership(id=org_id, type="organization"), False))

        logger.info(f"Fetched {len(sites)} site(s) from Pantheon")
        return list(sites.values())

    def load(self, cached: bool = False) -> List[SiteDescriptor]:
        """
        Return the inventory, from the cache when requested and available.

        Args:
            cached: Use the cached inventory instead of refetching

        Returns:
            List of SiteDescriptor
        """
        if cached:
            sites = self._read_cache()
            if sites is not None:
                logger.info(f"Using cached inventory of {len(sites)} site(s)")
                return sites
            logger.info("No cached inventory found; fetching from Pantheon")

        sites = self.fetch()
        self._write_cache(sites)
        return sites

    def _read_cache(self) -> Optional[List[SiteDescriptor]]:
        if not os.path.isfile(self.cache_path):
            return None
        try:
            with open(self.cache_path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return [SiteDescriptor.from_dict(item) for item in data["sites"]]
        except (OSError, ValueError, KeyError) as e:
            logger.warning(f"Ignoring unreadable inventory cache {self.cache_path}: {e}")
            return None

    def _write_cache(self, sites: List[SiteDescriptor]) -> None:
        try:
            os.makedirs(os.path.dirname(self.cache_path), exist_ok=True)
            with open(self.cache_path, "w", encoding="utf-8") as f:
                json.dump({"sites": [s.to_dict() for s in sites]}, f, indent=2)
        except OSError as e:
            logger.warning(f"Could not write inventory cache {self.cache_path}: {e}")


class FleetResolver:
    """Filters an inventory down to the sites selected for an update run."""

    def __init__(self, sites: List[SiteDescriptor], user_id: Optional[str] = None):
        """
        Args:
            sites: Full inventory, in fetch order
            user_id: Id of the calling user, used to resolve owner "me"
        """
        self.sites = sites
        self.user_id = user_id

    def resolve(self, selectors: SiteSelectors) -> List[SiteDescriptor]:
        """
        Apply the selectors conjunctively: team, organization, name, owner.

        Raises:
            EmptyResultError: If no site survives the filters
        """
        sites = list(self.sites)

        if selectors.team_only:
            sites = [s for s in sites if s.team_member]

        if selectors.org_id == "all":
            sites = [
                s for s in sites if any(m.type == "organization" for m in s.memberships)
            ]
        elif selectors.org_id:
            sites = [
                s for s in sites if any(m.id == selectors.org_id for m in s.memberships)
            ]

        if selectors.name_regex:
            try:
                pattern = re.compile(selectors.name_regex)
            except re.error as e:
                raise ConfigError(f"Invalid --name regex {selectors.name_regex!r}: {e}")
            sites = [s for s in sites if pattern.search(s.name)]

        if selectors.owner:
            owner = self.user_id if selectors.owner == "me" else selectors.owner
            sites = [s for s in sites if s.owner == owner]

        if not sites:
            raise EmptyResultError("Given arguments failed to find any sites.")

        logger.info(f"Selected {len(sites)} of {len(self.sites)} site(s)")
        return sites
