"""Owner-facing registries for subscriptions and inbound mappings."""

from .mappings import MappingRegistry
from .subscriptions import SubscriptionListener, SubscriptionRegistry, as_validation_error

__all__ = [
    "MappingRegistry",
    "SubscriptionListener",
    "SubscriptionRegistry",
    "as_validation_error",
]
