"""Reflect Prometheus Alertmanager notifications into Azure DevOps work items."""

from alert_workitem_receiver.config import Config, ReceiverConfig
from alert_workitem_receiver.exceptions import NotifyError
from alert_workitem_receiver.models import AlertGroup, TrackedItem
from alert_workitem_receiver.receiver import Receiver

__all__ = [
    "AlertGroup",
    "Config",
    "NotifyError",
    "Receiver",
    "ReceiverConfig",
    "TrackedItem",
]
