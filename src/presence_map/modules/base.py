"""
Base classes and protocols for presence map modules.

Modules are plug-ins that add behavior on top of the kernel Event Bus.
"""

from abc import ABC, abstractmethod
from typing import Dict


class MapModule(ABC):
    """
    Base class for presence map modules.

    A module:
    - Receives events from the Event Bus
    - Maintains its own runtime state
    - Emits events that other modules can consume
    """

    @property
    @abstractmethod
    def id(self) -> str:
        """Unique identifier for this module type."""
        pass

    @property
    @abstractmethod
    def CURRENT_CONFIG_VERSION(self) -> int:
        """Current configuration version for this module."""
        pass

    @abstractmethod
    def attach(self, bus) -> None:
        """
        Attach the module to the kernel.

        Register event subscriptions and capture a reference to the bus.

        Args:
            bus: EventBus instance
        """
        pass

    @abstractmethod
    def default_config(self) -> Dict:
        """
        Get default configuration for this module.

        Returns:
            Default configuration dict
        """
        pass

    @abstractmethod
    def config_schema(self) -> Dict:
        """
        Get JSON-schema-like definition for UI configuration.

        Returns:
            Schema dict that UIs can use to render configuration forms
        """
        pass

    def migrate_config(self, config: Dict) -> Dict:
        """
        Migrate configuration to current version.

        Default implementation stamps the current version.
        Override to handle version upgrades.

        Args:
            config: Configuration dict (potentially older version)

        Returns:
            Migrated configuration dict
        """
        config = dict(config)
        config["version"] = self.CURRENT_CONFIG_VERSION
        return config

    def configure(self, config: Dict) -> None:
        """
        Apply a configuration dict to this module.

        Args:
            config: Configuration dict (migrated before use)
        """
        pass

    def dump_state(self) -> Dict:
        """
        Serialize runtime state for diagnostics.

        Returns:
            Serialized state dict
        """
        return {}
