"""
Default module catalog, used when the store has no catalog rows.
"""

from typing import List

from .models import Module

DEFAULT_MODULES: List[Module] = [
    Module("staff_time_analysis", "Staff Time Analysis",
           "Time tracking, attendance, and payroll support."),
    Module("inventory_stock_control", "Inventory & Stock Control",
           "Inventory catalog, stock movement, and supplier component mapping."),
    Module("quoting_proposals", "Quoting & Proposals",
           "Quote drafting, pricing, attachments, and email workflows."),
    Module("suppliers_management", "Supplier Management",
           "Supplier profiles, pricing references, and purchasing support."),
    Module("purchasing_purchase_orders", "Purchasing & Purchase Orders",
           "Purchase ordering, approvals, receiving, and supplier communications.",
           frozenset({"suppliers_management"})),
    Module("products_bom", "Products & Bill of Materials",
           "Product catalog, BOM, options, and product costing."),
    Module("orders_fulfillment", "Orders & Fulfillment",
           "Sales orders, fulfillment, and production demand planning.",
           frozenset({"products_bom"})),
    Module("customers_management", "Customers Management",
           "Customer records, contact data, and account history."),
    Module("cutlist_optimizer", "Cutlist & Material Optimization",
           "Sheet nesting and cutlist optimization workflows.",
           frozenset({"products_bom"})),
    Module("user_control_access", "User Control & Access Management",
           "Role/permission management and audit controls."),
    Module("furniture_configurator", "Furniture Configurator",
           "Parametric furniture builder with generated cutlist output.",
           frozenset({"products_bom", "cutlist_optimizer"})),
]
