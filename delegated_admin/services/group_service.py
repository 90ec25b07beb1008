"""Security groups in the partner tenant used as access-assignment containers."""

import logging
import re
from typing import Callable, Dict, Optional

from ..config_manager import PollingConfig
from ..exceptions import OperationTimeoutError, RemoteRequestError
from ..retry_policy import RetryPolicy
from .directory_client import DirectoryClient, Token, odata_filter_eq

logger = logging.getLogger(__name__)


def mail_nickname(display_name: str) -> str:
    nickname = re.sub(r"[^A-Za-z0-9]", "", display_name)[:64]
    return nickname or "group"


class GroupService:
    """Finds or creates security groups and waits until they are readable."""

    def __init__(
        self,
        client: DirectoryClient,
        token_provider: Callable[[], Token],
        polling: Optional[PollingConfig] = None,
        propagation_policy: Optional[RetryPolicy] = None,
    ) -> None:
        self.client = client
        self.token_provider = token_provider
        polling = polling or PollingConfig()
        self.propagation_policy = propagation_policy or RetryPolicy.fixed(
            polling.group_propagation_interval,
            max_attempts=polling.group_propagation_attempts,
        )

    def find_group(self, display_name: str) -> Optional[Dict]:
        response = self.client.get(
            self.client.graph_url("groups"),
            self.token_provider(),
            params={
                "$filter": odata_filter_eq("displayName", display_name),
                "$select": "id,displayName,securityEnabled",
            },
        )
        groups = response.data.get("value") or []
        if len(groups) > 1:
            logger.warning(
                f"{len(groups)} groups named '{display_name}', using {groups[0]['id']}"
            )
        return groups[0] if groups else None

    def create_group(self, display_name: str, description: str = "") -> Dict:
        body = {
            "displayName": display_name,
            "description": description or f"{display_name} (delegated admin access)",
            "mailEnabled": False,
            "mailNickname": mail_nickname(display_name),
            "securityEnabled": True,
        }
        response = self.client.post(self.client.graph_url("groups"), self.token_provider(), json=body)
        logger.info(f"Created security group '{display_name}' ({response.data.get('id')})")
        return response.data

    def _group_visible(self, group_id: str) -> bool:
        try:
            self.client.get(self.client.graph_url(f"groups/{group_id}"), self.token_provider())
        except RemoteRequestError as e:
            if e.status_code == 404:
                return False
            raise
        return True

    def wait_for_group(self, group_id: str) -> None:
        """Poll until a new group is readable.

        Raises:
            OperationTimeoutError: Group not visible within the propagation policy
        """
        result = self.propagation_policy.poll(
            lambda: self._group_visible(group_id),
            until=bool,
            description=f"group {group_id} propagation",
        )
        if not result.satisfied:
            raise OperationTimeoutError(
                f"Group {group_id} not visible after {result.attempts} checks",
                error_code="GROUP_PROPAGATION_TIMEOUT",
                context={"group_id": group_id},
            )

    def ensure_group(self, display_name: str) -> str:
        """Return the id of group ``display_name``, creating it if absent."""
        existing = self.find_group(display_name)
        if existing:
            logger.debug(f"Group '{display_name}' exists ({existing['id']})")
            return existing["id"]
        created = self.create_group(display_name)
        self.wait_for_group(created["id"])
        return created["id"]
