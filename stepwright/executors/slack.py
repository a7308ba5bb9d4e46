"""Slack message executors."""

from __future__ import annotations

import logging
from typing import Any, Dict

import httpx

from ..errors import ExecutorError
from .base import ExecutorContext, HttpStepExecutor, require_setting, response_json

logger = logging.getLogger(__name__)


def _check(response: httpx.Response, default: str) -> Dict[str, Any]:
    payload = response_json(response)
    if not isinstance(payload, dict) or not payload.get("ok"):
        error = payload.get("error") if isinstance(payload, dict) else None
        raise ExecutorError(
            error or default, status_code=response.status_code, response=payload
        )
    return payload


class SlackExecutor(HttpStepExecutor):
    """Shared Slack Web API plumbing."""

    @property
    def base_url(self) -> str:
        return self.config.slack_api_url

    async def post_message(
        self, client: httpx.AsyncClient, channel: str, message: str
    ) -> Dict[str, Any]:
        response = await client.post(
            "/chat.postMessage", json={"channel": channel, "text": message}
        )
        payload = _check(response, "Slack message failed")
        return {"channel": payload.get("channel"), "ts": payload.get("ts")}


class SlackChannelMessageExecutor(SlackExecutor):
    """Post ``message`` to ``channel``."""

    node_types = ("slack-channel-message",)

    async def execute(self, settings: Dict[str, Any], context: ExecutorContext) -> Any:
        channel = require_setting(settings, "channel", "Slack channel")
        message = str(settings.get("message") or "")
        token = await self.credentials.get_slack_token(context.company_id)
        async with self.client(token) as client:
            output = await self.post_message(client, channel, message)
        logger.info(f"Run {context.run_id}: posted Slack message to {channel}")
        return output


class SlackUserMessageExecutor(SlackExecutor):
    """Send ``message`` as a direct message to ``user`` (Slack id or e-mail)."""

    node_types = ("slack-user-message",)

    async def execute(self, settings: Dict[str, Any], context: ExecutorContext) -> Any:
        user = require_setting(settings, "user", "Slack user")
        message = str(settings.get("message") or "")
        token = await self.credentials.get_slack_token(context.company_id)
        async with self.client(token) as client:
            user_id = user
            if "@" in user:
                response = await client.post(
                    "/users.lookupByEmail", data={"email": user}
                )
                payload = _check(response, "Slack user not found")
                user_id = (payload.get("user") or {}).get("id")
                if not user_id:
                    raise ExecutorError("Slack user not found", response=payload)

            response = await client.post("/conversations.open", json={"users": user_id})
            payload = _check(response, "Slack DM failed")
            channel = (payload.get("channel") or {}).get("id")
            if not channel:
                raise ExecutorError("Slack DM failed", response=payload)

            output = await self.post_message(client, channel, message)
        logger.info(f"Run {context.run_id}: sent Slack DM to {user_id}")
        return output
