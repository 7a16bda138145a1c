"""Webhook processing errors"""


class WebhookError(Exception):
    pass


class WebhookVerificationError(WebhookError):
    """Signature header missing, invalid, or no webhook secret configured"""
    pass


class MalformedEventError(WebhookError):
    """Body is not JSON or lacks the id/type/data.object envelope"""
    pass


class WebhookDataError(WebhookError, ValueError):
    """Event is authentic but cannot be applied (unknown plan, missing subscription, missing fields)"""
    pass
