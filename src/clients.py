"""
REST API client for the Pantheon platform API.
"""

import logging
import time
from typing import Any, Dict, List, Optional

import requests

logger = logging.getLogger(__name__)

API_BASE = "https://terminus.pantheon.io/api"


class PantheonRestClient:
    """REST client for the Pantheon API, authenticated with a machine token."""

    RETRYABLE_STATUS_CODES = {409, 429, 500, 502, 503, 504}
    PAGE_SIZE = 100

    def __init__(
        self,
        machine_token: str,
        timeout_s: int = 60,
        max_retries: int = 5,
        base_delay: float = 5.0,
        poll_interval: float = 3.0,
    ):
        """
        Initialize the Pantheon REST client.

        Args:
            machine_token: Pantheon machine token
            timeout_s: Request timeout in seconds
            max_retries: Maximum number of retries for transient errors
            base_delay: Base delay for exponential backoff
            poll_interval: Interval between workflow polls (seconds)
        """
        self.machine_token = machine_token
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.poll_interval = poll_interval

        self.session = requests.Session()
        self.session.headers.update(
            {"Content-Type": "application/json", "User-Agent": "pantheon-fleet-update"}
        )
        self.user_id: Optional[str] = None

    def _url(self, path: str) -> str:
        """Construct full API URL from path."""
        return f"{API_BASE}/{path.lstrip('/')}"

    def authenticate(self) -> str:
        """
        Exchange the machine token for a session token.

        Returns:
            The authenticated user's id

        Raises:
            RuntimeError: If authentication fails
        """
        result = self._request_with_retry(
            "POST",
            self._url("authorize/machine-token"),
            json={"machine_token": self.machine_token, "client": "terminus"},
        )
        resp = result["response"]
        if resp.status_code != 200:
            raise RuntimeError(f"Authentication failed ({resp.status_code}): {resp.text}")
        data = resp.json()
        self.session.headers["Authorization"] = f"Bearer {data['session']}"
        self.user_id = data["user_id"]
        logger.info(f"Authenticated as user {self.user_id}")
        return self.user_id

    def _request_with_retry(self, method: str, url: str, **kwargs) -> dict:
        """
        Execute HTTP request with exponential backoff retry for transient errors.

        Args:
            method: HTTP method (GET, POST, PUT, DELETE)
            url: Request URL
            **kwargs: Additional request parameters

        Returns:
            Dictionary with 'response' and 'status_code' keys

        Raises:
            RuntimeError: If max retries exceeded
        """
        last_error = None

        for attempt in range(self.max_retries + 1):
            try:
                resp = self.session.request(
                    method.upper(), url, timeout=self.timeout_s, **kwargs
                )

                if resp.status_code in self.RETRYABLE_STATUS_CODES:
                    delay = self._calculate_delay(attempt, resp)
                    logger.warning(
                        f"Retryable error {resp.status_code}, attempt {attempt + 1}/{self.max_retries + 1}, waiting {delay:.1f}s..."
                    )
                    last_error = f"HTTP {resp.status_code}: {resp.text[:200]}"
                    time.sleep(delay)
                    continue

                return {"response": resp, "status_code": resp.status_code}

            except requests.RequestException as e:
                delay = self._calculate_delay(attempt)
                logger.warning(
                    f"Request error: {e}, attempt {attempt + 1}/{self.max_retries + 1}, waiting {delay:.1f}s..."
                )
                last_error = str(e)
                time.sleep(delay)

        raise RuntimeError(f"Max retries exceeded. Last error: {last_error}")

    def _calculate_delay(self, attempt: int, resp=None) -> float:
        """
        Calculate delay with exponential backoff and jitter.

        Args:
            attempt: Current attempt number
            resp: Optional response object (to check Retry-After header)

        Returns:
            Delay in seconds
        """
        if resp is not None and "Retry-After" in resp.headers:
            try:
                return float(resp.headers["Retry-After"])
            except ValueError:
                pass

        delay = self.base_delay * (2**attempt)
        jitter = delay * 0.2 * (0.5 - time.time() % 1)
        return min(delay + jitter, 180.0)

    def get(self, path: str, params: Optional[Dict] = None) -> Any:
        """GET a path and return the decoded JSON body."""
        result = self._request_with_retry("GET", self._url(path), params=params or {})
        resp = result["response"]
        if resp.status_code != 200:
            raise RuntimeError(f"GET {path} failed ({resp.status_code}): {resp.text}")
        return resp.json()

    def post(self, path: str, body: Optional[Dict] = None) -> Any:
        """POST a JSON body to a path and return the decoded JSON body."""
        result = self._request_with_retry("POST", self._url(path), json=body or {})
        resp = result["response"]
        if resp.status_code not in (200, 201, 202):
            raise RuntimeError(f"POST {path} failed ({resp.status_code}): {resp.text}")
        return resp.json()

    def get_paged(self, path: str) -> List[Dict]:
        """
        Fetch every item of a paged collection.

        Pantheon pages with ``limit`` and ``start`` (the id of the last item
        of the previous page).

        Args:
            path: Collection path

        Returns:
            List of items
        """
        items: List[Dict] = []
        start: Optional[str] = None

        while True:
            params: Dict[str, Any] = {"limit": self.PAGE_SIZE}
            if start:
                params["start"] = start

            page = self.get(path, params=params)
            if isinstance(page, dict):
                page = list(page.values())

            items.extend(page)
            if len(page) < self.PAGE_SIZE:
                break
            start = page[-1].get("id")
            if not start:
                break

        return items

    def list_team_sites(self) -> List[Dict]:
        """List site memberships of the authenticated user."""
        return self.get_paged(f"users/{self.user_id}/memberships/sites")

    def list_organizations(self) -> List[Dict]:
        """List organization memberships of the authenticated user."""
        return self.get_paged(f"users/{self.user_id}/memberships/organizations")

    def list_organization_sites(self, org_id: str) -> List[Dict]:
        """List site memberships of an organization."""
        return self.get_paged(f"organizations/{org_id}/memberships/sites")

    def get_site_id(self, site_name: str) -> str:
        """Resolve a site name to its UUID."""
        return self.get(f"site-names/{site_name}")["id"]

    def get_site(self, site_id: str) -> Dict:
        """Get the attributes of a site."""
        return self.get(f"sites/{site_id}")

    def get_environments(self, site_id: str) -> Dict[str, Dict]:
        """Get the environments of a site keyed by environment id."""
        return self.get(f"sites/{site_id}/environments")

    def create_workflow(
        self, site_id: str, env: Optional[str], workflow_type: str, params: Dict
    ) -> Dict:
        """
        Start a workflow on a site or one of its environments.

        Args:
            site_id: Site UUID
            env: Environment id, or None for a site-level workflow
            workflow_type: Pantheon workflow type
            params: Workflow parameters

        Returns:
            Workflow data as returned by the API
        """
        path = f"sites/{site_id}/workflows"
        if env:
            path = f"sites/{site_id}/environments/{env}/workflows"
        return self.post(path, {"type": workflow_type, "params": params})

    def wait_for_workflow(self, site_id: str, workflow: Dict) -> Dict:
        """
        Poll a workflow until it finishes.

        There is no timeout: the platform always finishes a workflow,
        successfully or not.

        Args:
            site_id: Site UUID
            workflow: Workflow data returned by create_workflow

        Returns:
            Final workflow data
        """
        workflow_id = workflow["id"]
        start = time.time()
        while not workflow.get("finished_at") and workflow.get("result") is None:
            time.sleep(self.poll_interval)
            workflow = self.get(f"sites/{site_id}/workflows/{workflow_id}")
            logger.debug(
                f"Workflow {workflow.get('type')} {workflow_id}: "
                f"{time.time() - start:.0f}s elapsed"
            )
        return workflow

    def run_workflow(
        self, site_id: str, env: Optional[str], workflow_type: str, params: Dict
    ) -> Dict:
        """Start a workflow and block until it finishes."""
        workflow = self.create_workflow(site_id, env, workflow_type, params)
        return self.wait_for_workflow(site_id, workflow)
