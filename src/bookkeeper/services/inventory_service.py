from __future__ import annotations

from typing import Optional

from bookkeeper.domain.errors import InvalidArgumentError, NotFoundError
from bookkeeper.domain.ledger import ItemCostLookup
from bookkeeper.domain.models import Customer, Item


class InventoryService:
    """Catalog and customer maintenance."""

    def __init__(self, repo):
        self.repo = repo

    # ---------- Items ----------
    def list_items(self, include_inactive: bool = False) -> list[Item]:
        return self.repo.list_items(include_inactive)

    def get_item(self, item_id: int) -> Item:
        item = self.repo.get_item(int(item_id))
        if not item:
            raise NotFoundError("Item not found.")
        return item

    def add_item(
        self,
        title: str,
        category: str,
        production_price: float,
        selling_price: float,
        stock: int,
        author: Optional[str] = None,
    ) -> int:
        title = (title or "").strip()
        category = (category or "").strip()
        if not title or not category:
            raise InvalidArgumentError("Title and Category are required.")
        if stock < 0:
            raise InvalidArgumentError("Stock must be >= 0.")
        if production_price < 0 or selling_price < 0:
            raise InvalidArgumentError("Prices must be >= 0.")
        return self.repo.add_item(title, category, float(production_price), float(selling_price), int(stock), author)

    def update_item(
        self,
        item_id: int,
        title: str,
        category: str,
        production_price: float,
        selling_price: float,
        author: Optional[str] = None,
    ) -> None:
        title = (title or "").strip()
        category = (category or "").strip()
        if not title or not category:
            raise InvalidArgumentError("Title and Category are required.")
        if production_price < 0 or selling_price < 0:
            raise InvalidArgumentError("Prices must be >= 0.")
        updated = self.repo.update_item(int(item_id), title, category, float(production_price), float(selling_price), author)
        if not updated:
            raise NotFoundError("Item not found.")

    def delete_item(self, item_id: int) -> None:
        # soft delete; past sales still resolve the item's cost
        if not self.repo.deactivate_item(int(item_id)):
            raise NotFoundError("Item not found.")

    def item_cost_lookup(self) -> ItemCostLookup:
        """Snapshot of production prices, inactive items included."""
        costs = {item.id: item.production_price for item in self.repo.list_items(include_inactive=True)}
        return costs.get

    # ---------- Customers ----------
    def list_customers(self) -> list[Customer]:
        return self.repo.list_customers()

    def customers_with_due(self) -> list[Customer]:
        return self.repo.list_customers_with_due()

    def get_customer(self, customer_id: int) -> Customer:
        customer = self.repo.get_customer(int(customer_id))
        if not customer:
            raise NotFoundError("Customer not found.")
        return customer

    def add_customer(self, name: str, phone: str = "", address: str = "", opening_balance: float = 0.0) -> int:
        name = (name or "").strip()
        if not name:
            raise InvalidArgumentError("Name is required.")
        return self.repo.add_customer(name, (phone or "").strip(), (address or "").strip(), float(opening_balance or 0.0))

    def update_customer(self, customer_id: int, name: str, phone: str = "", address: str = "", opening_balance: float = 0.0) -> None:
        name = (name or "").strip()
        if not name:
            raise InvalidArgumentError("Name is required.")
        updated = self.repo.update_customer(
            int(customer_id), name, (phone or "").strip(), (address or "").strip(), float(opening_balance or 0.0)
        )
        if not updated:
            raise NotFoundError("Customer not found.")
