"""
                        Services Module

Business logic of the order desk. The store follows the hybrid pattern:
a Mock implementation for development and a Real one for production.

Services:
    - order_ids: order number generation
    - status_machine: legal status transitions
    - orders: order creation, transactional status updates, live feed
    - store: document store (mock / SQL)
    - excel_manager: lock-protected Excel order ledger
"""

from orderdesk.services.orders import OrderService

__all__ = ["OrderService"]
