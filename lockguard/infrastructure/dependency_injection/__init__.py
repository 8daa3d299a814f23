from .factory import build_change_bus, build_state_store, create_protection_service

__all__ = ["build_change_bus", "build_state_store", "create_protection_service"]
