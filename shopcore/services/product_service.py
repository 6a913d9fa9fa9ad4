# shopcore/services/product_service.py
import logging
from typing import Iterable, List, Optional
from ..models.order import OrderLine
from ..models.product import Product, StockDecrement

class ProductService:
    """Catalog reads and the stock ledger"""

    def __init__(self, db):
        self.db = db
        self.logger = logging.getLogger(__name__)

    async def get_product(self, product_id: int) -> Optional[Product]:
        """Fetch an active product"""
        async with self.db.pool.acquire() as conn:
            product = await conn.fetchrow("""
                SELECT *
                FROM products
                WHERE product_id = $1 AND is_active = true
            """, product_id)
            return Product.model_validate(dict(product)) if product else None

    async def decrement_stock(self, product_id: int, quantity: int) -> StockDecrement:
        """Subtract quantity in one locked statement, flooring stock at zero"""
        async with self.db.pool.acquire() as conn:
            row = await conn.fetchrow("""
                UPDATE products AS p
                SET stock = GREATEST(p.stock - $2, 0)
                FROM (
                    SELECT product_id, stock
                    FROM products
                    WHERE product_id = $1
                    FOR UPDATE
                ) AS before
                WHERE p.product_id = before.product_id
                RETURNING before.stock AS previous_stock, p.stock AS remaining_stock
            """, product_id, quantity)

        if row is None:
            return StockDecrement(
                product_id=product_id,
                requested=quantity,
                error=f"Product {product_id} not found"
            )

        fulfilled = min(row['previous_stock'], quantity)
        result = StockDecrement(
            product_id=product_id,
            requested=quantity,
            fulfilled=fulfilled,
            remaining=row['remaining_stock']
        )
        if fulfilled < quantity:
            result.error = (
                f"Insufficient stock for product {product_id}: "
                f"requested {quantity}, available {row['previous_stock']}"
            )
        return result

    async def decrement_for_order(self, lines: Iterable[OrderLine]) -> List[StockDecrement]:
        """Decrement stock for every order line; one result per line"""
        results = []
        for line in lines:
            results.append(await self.decrement_stock(line.product_id, line.quantity))
        return results
