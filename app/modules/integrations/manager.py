"""Registry of third-party integrations, loaded lazily by type."""
import hashlib
import importlib
import json
import logging
import re
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from cachetools import LRUCache

from app.modules.integrations.base import BaseIntegration

logger = logging.getLogger(__name__)

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


class UnknownIntegrationError(Exception):
    pass


class UnknownActionError(Exception):
    pass


def import_loader(path: str) -> Callable[[], Type[BaseIntegration]]:
    """Loader for "package.module:ClassName"; the module is imported on first use."""
    module_name, class_name = path.split(":")

    def load() -> Type[BaseIntegration]:
        return getattr(importlib.import_module(module_name), class_name)
    return load


def action_name(action: str) -> str:
    """sendMessage -> send_message; snake_case names pass through."""
    return _CAMEL_BOUNDARY.sub("_", action).lower()


def credentials_fingerprint(config: Optional[Dict[str, Any]]) -> str:
    if not config:
        return ""
    return hashlib.sha256(json.dumps(config, sort_keys=True, default=str).encode()).hexdigest()


class _InstanceCache(LRUCache):
    """Configured provider instances; evicted ones release their HTTP client."""

    def popitem(self):
        key, integration = super().popitem()
        integration.close()
        return key, integration


@dataclass
class _Registration:
    loader: Callable[[], Type[BaseIntegration]]
    category: str
    display_name: str
    cls: Optional[Type[BaseIntegration]] = None
    instance: Optional[BaseIntegration] = None


class IntegrationManager:
    def __init__(self, register_defaults: bool = True, max_instances: int = 128):
        self._integrations: Dict[str, _Registration] = {}
        self._instances: Dict[Tuple[str, str], BaseIntegration] = _InstanceCache(maxsize=max_instances)
        self._lock = threading.Lock()
        if register_defaults:
            self.initialize_integrations()

    def initialize_integrations(self) -> None:
        providers = "app.modules.integrations.providers"
        self.register("cashfree", import_loader(f"{providers}.cashfree:CashfreeIntegration"),
                      category="payment", display_name="Cashfree")
        self.register("whatsapp_official", import_loader(f"{providers}.whatsapp_official:WhatsAppOfficialIntegration"),
                      category="communication", display_name="WhatsApp (Official)")
        self.register("telegram", import_loader(f"{providers}.telegram:TelegramIntegration"),
                      category="communication", display_name="Telegram")
        self.register("msg91", import_loader(f"{providers}.msg91:Msg91Integration"),
                      category="communication", display_name="MSG91")
        self.register("shiprocket", import_loader(f"{providers}.shiprocket:ShiprocketIntegration"),
                      category="logistics", display_name="Shiprocket")

    def register(self, integration_type: str, loader: Callable[[], Type[BaseIntegration]],
                 category: str = "other", display_name: Optional[str] = None) -> None:
        self._integrations[integration_type] = _Registration(loader, category, display_name or integration_type)

    def _registration(self, integration_type: str) -> _Registration:
        registration = self._integrations.get(integration_type)
        if registration is None:
            raise UnknownIntegrationError(f"Unknown integration type: {integration_type}")
        return registration

    def get_integration_class(self, integration_type: str) -> Type[BaseIntegration]:
        registration = self._registration(integration_type)
        with self._lock:
            if registration.cls is None:
                registration.cls = registration.loader()
                logger.info(f"Loaded integration {integration_type}")
        return registration.cls

    def get_integration(self, integration_type: str) -> BaseIntegration:
        """Shared instance, created on first request."""
        registration = self._registration(integration_type)
        cls = self.get_integration_class(integration_type)
        with self._lock:
            if registration.instance is None:
                registration.instance = cls()
        return registration.instance

    def create_integration(self, integration_type: str, config: Optional[Dict[str, Any]] = None) -> BaseIntegration:
        """Fresh instance initialised with config. The caller owns it and must close it."""
        integration = self.get_integration_class(integration_type)()
        if config:
            integration.initialize(config)
        return integration

    def get_configured_integration(self, integration_type: str,
                                   config: Optional[Dict[str, Any]] = None) -> BaseIntegration:
        """Instance shared by every caller with the same credentials.

        Keeps the client-side request window, auth tokens and HTTP connections
        alive between calls; credentials never cross between fingerprints.
        """
        key = (integration_type, credentials_fingerprint(config))
        with self._lock:
            integration = self._instances.get(key)
        if integration is not None:
            return integration
        integration = self.create_integration(integration_type, config)
        with self._lock:
            existing = self._instances.get(key)
            if existing is not None:
                integration.close()
                return existing
            self._instances[key] = integration
        return integration

    def execute(self, integration_type: str, action: str, config: Optional[Dict[str, Any]] = None,
                params: Optional[Dict[str, Any]] = None) -> Any:
        name = action_name(action)
        cls = self.get_integration_class(integration_type)
        if name not in cls.actions:
            raise UnknownActionError(f"Unknown action '{action}' for integration '{integration_type}'")
        integration = self.get_configured_integration(integration_type, config)
        return getattr(integration, name)(params or {})

    def test_connection(self, integration_type: str, credentials: Dict[str, Any]) -> Dict[str, Any]:
        with self.create_integration(integration_type) as integration:
            return integration.test_connection(credentials)

    def close(self) -> None:
        with self._lock:
            # clear() evicts through popitem, which closes each instance
            self._instances.clear()
            for registration in self._integrations.values():
                if registration.instance is not None:
                    registration.instance.close()
                    registration.instance = None

    def get_available_actions(self, integration_type: str) -> List[str]:
        return list(self.get_integration_class(integration_type).actions)

    def get_available_integrations(self) -> List[Dict[str, str]]:
        return [
            {"type": t, "category": r.category, "displayName": r.display_name}
            for t, r in self._integrations.items()
        ]

    def get_integration_category(self, integration_type: str) -> str:
        registration = self._integrations.get(integration_type)
        return registration.category if registration else "other"

    def get_display_name(self, integration_type: str) -> str:
        registration = self._integrations.get(integration_type)
        return registration.display_name if registration else integration_type


_manager: Optional[IntegrationManager] = None


def get_integration_manager() -> IntegrationManager:
    global _manager
    if _manager is None:
        _manager = IntegrationManager()
    return _manager


def close_integration_manager() -> None:
    global _manager
    if _manager is not None:
        _manager.close()
        _manager = None
