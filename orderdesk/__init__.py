"""
                Order Desk

Restaurant ordering backend: a public storefront API for placing delivery
orders and an admin API for driving order fulfillment through the
pending -> processing -> completed/cancelled lifecycle.

Author: Khalil_Bannouri
Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
__author__ = "Khalil_Bannouri"
