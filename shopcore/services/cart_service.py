# shopcore/services/cart_service.py
from typing import List
from ..errors import NotFound, ValidationFailed
from ..models.cart import CartLine

class CartService:
    """Per-user cart storage"""

    def __init__(self, db):
        self.db = db

    async def get_cart_lines(self, user_id: int) -> List[CartLine]:
        """Cart lines priced at the product's current price"""
        async with self.db.pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT ci.product_id, ci.quantity, p.price AS unit_price,
                       p.discount_percent, p.name AS product_name, p.image
                FROM cart_items ci
                JOIN products p ON p.product_id = ci.product_id
                WHERE ci.user_id = $1
                ORDER BY ci.cart_item_id DESC
            """, user_id)
            return [CartLine.model_validate(dict(row)) for row in rows]

    async def add_item(self, user_id: int, product_id: int, quantity: int = 1) -> int:
        """Add units of a product; returns the new line quantity"""
        if quantity <= 0:
            raise ValidationFailed(["Quantity must be a positive number."])

        async with self.db.pool.acquire() as conn:
            async with conn.transaction():
                stock = await conn.fetchval("""
                    SELECT stock FROM products
                    WHERE product_id = $1 AND is_active = true
                """, product_id)
                if stock is None:
                    raise NotFound("Product not found.")

                current = await conn.fetchval("""
                    SELECT quantity FROM cart_items
                    WHERE user_id = $1 AND product_id = $2
                """, user_id, product_id) or 0

                if current + quantity > stock:
                    raise ValidationFailed([f"Only {stock} in stock. Please reduce quantity."])

                return await conn.fetchval("""
                    INSERT INTO cart_items (user_id, product_id, quantity)
                    VALUES ($1, $2, $3)
                    ON CONFLICT (user_id, product_id)
                    DO UPDATE SET quantity = cart_items.quantity + EXCLUDED.quantity
                    RETURNING quantity
                """, user_id, product_id, quantity)

    async def remove_item(self, user_id: int, product_id: int) -> bool:
        async with self.db.pool.acquire() as conn:
            result = await conn.execute("""
                DELETE FROM cart_items WHERE user_id = $1 AND product_id = $2
            """, user_id, product_id)
            return result == "DELETE 1"

    async def clear_cart(self, user_id: int) -> None:
        async with self.db.pool.acquire() as conn:
            await conn.execute("""
                DELETE FROM cart_items WHERE user_id = $1
            """, user_id)
