"""Webhook 模块 - 会话事件的重试投递。"""

from sessionhub.webhook.policy import RetryPolicy, exponential_backoff
from sessionhub.webhook.service import WebhookDispatcher, WebhookService

__all__ = ["RetryPolicy", "exponential_backoff", "WebhookService", "WebhookDispatcher"]
