from enum import Enum


class InventoryStatus(str, Enum):
    """Stock status shown to shoppers and used for low stock alerts."""

    SUFFICIENT = "sufficient"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"


def derive_status(available_quantity: int, low_stock_threshold: int) -> InventoryStatus:
    """
    Map an availability count to a status.

    The threshold is inclusive: with a threshold of 10, exactly 10 available
    units is LOW_STOCK and 11 is SUFFICIENT.
    """
    if available_quantity <= 0:
        return InventoryStatus.OUT_OF_STOCK
    if available_quantity <= low_stock_threshold:
        return InventoryStatus.LOW_STOCK
    return InventoryStatus.SUFFICIENT
