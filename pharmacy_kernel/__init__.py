"""
pharmacy_kernel -- pharmacy sale transaction engine.

Turns a basket of (medication, quantity) requests into deductions against
specific inventory lots, soonest expiration first, and records the sale with
full lot traceability in one atomic transaction.

Entry point: ``pharmacy_kernel.services.SaleCoordinator.create_sale``.
"""

__version__ = "0.1.0"
