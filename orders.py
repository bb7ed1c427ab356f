"""
Order intake, inventory reconciliation and revenue reports.

Stock moves only through this module:

* creating an order checks every line item against ``countInStock`` before
  anything is written, stores the order, then takes the stock item by item
  with a conditional ``$inc`` so two concurrent orders can never drive a
  product below zero;
* cancelling an order gives back the stock of the items stored on it;
* deleting an order gives the stock back unless it was already cancelled.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from fastapi import HTTPException
from pydantic import BaseModel, Field, field_validator
from pymongo.database import Database

from config import ORDER_STATUS_CANCELLED, ORDER_STATUS_COMPLETED
from database import (
    create_document,
    get_page,
    regex_contains,
    to_object_id,
    utcnow,
)
from schemas import Order, OrderItem, check_order_status

logger = logging.getLogger(__name__)


class OrderUpdateBody(BaseModel):
    user: Optional[str] = None
    orderItems: Optional[List[OrderItem]] = Field(None, min_length=1)
    totalPrice: Optional[float] = Field(None, ge=0)
    paymentMethod: Optional[str] = Field(None, min_length=1)
    status: Optional[str] = None

    @field_validator("status")
    @classmethod
    def status_known(cls, value):
        return check_order_status(value)


# ----------------------- Helpers -----------------------
def parse_date(value: Optional[str], end_of_range: bool = False) -> Optional[datetime]:
    """Parse an ISO date or datetime query value into naive UTC.

    A bare date used as the upper bound is moved to the start of the next day
    so the whole day is included (callers compare with ``$lt``)."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid date: {value}")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    if end_of_range and len(value) == 10:
        parsed += timedelta(days=1)
    return parsed


def created_at_range(start_date: Optional[str], end_date: Optional[str]) -> Optional[dict]:
    start = parse_date(start_date)
    end = parse_date(end_date, end_of_range=True)
    if start is None and end is None:
        return None
    rng = {}
    if start is not None:
        rng["$gte"] = start
    if end is not None:
        rng["$lt" if len(end_date) == 10 else "$lte"] = end
    return rng


def find_user(database: Database, user_id) -> dict:
    user = database["user"].find_one({"_id": to_object_id(user_id)}, {"password": 0})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def load_products(database: Database, items: List[OrderItem]) -> List[dict]:
    products = []
    for item in items:
        product = database["product"].find_one({"_id": to_object_id(item.product)})
        if not product:
            raise HTTPException(status_code=404, detail=f"Product {item.product} not found")
        products.append(product)
    return products


def snapshot_items(items: List[OrderItem], products: List[dict]) -> List[dict]:
    """Line items keep the name and price at order time."""
    return [
        {
            "product": product["_id"],
            "name": item.name if item.name else product.get("name"),
            "price": item.price if item.price is not None else product.get("price", 0),
            "qty": item.qty,
        }
        for item, product in zip(items, products)
    ]


def restore_stock(database: Database, items: List[dict]):
    for item in items:
        res = database["product"].update_one(
            {"_id": item["product"]}, {"$inc": {"countInStock": item["qty"]}}
        )
        if res.matched_count == 0:
            logger.warning("Cannot restore %s x %s: product no longer exists", item["qty"], item["product"])
        else:
            logger.info("Restored %s x %s", item["qty"], item["product"])


def take_stock(database: Database, item: dict) -> bool:
    res = database["product"].update_one(
        {"_id": item["product"], "countInStock": {"$gte": item["qty"]}},
        {"$inc": {"countInStock": -item["qty"]}},
    )
    return res.modified_count == 1


# ----------------------- Orders -----------------------
def create_order(database: Database, body: Order) -> dict:
    if body.status == ORDER_STATUS_CANCELLED:
        raise HTTPException(status_code=400, detail="An order cannot be created cancelled")
    user = find_user(database, body.user)
    products = load_products(database, body.orderItems)

    # Every item is checked before any write.
    for item, product in zip(body.orderItems, products):
        available = product.get("countInStock", 0)
        if item.qty > available:
            logger.warning(
                "Rejected order for %s: %s wants %s, %s left",
                user["name"], product.get("name"), item.qty, available,
            )
            raise HTTPException(
                status_code=400,
                detail=f'Product "{product.get("name")}" is out of stock (only {available} left)',
            )

    items = snapshot_items(body.orderItems, products)
    total = body.totalPrice
    if total is None:
        total = round(sum(i["price"] * i["qty"] for i in items), 2)

    order = create_document(database, "order", {
        "user": user["_id"],
        "userName": user["name"],
        "orderItems": items,
        "totalPrice": total,
        "paymentMethod": body.paymentMethod,
        "status": body.status,
    })

    taken = []
    for item in items:
        if not take_stock(database, item):
            # Stock moved since the check above: undo this order entirely.
            restore_stock(database, taken)
            database["order"].delete_one({"_id": order["_id"]})
            logger.warning("Order for %s lost the race for %s", user["name"], item["name"])
            raise HTTPException(
                status_code=409,
                detail=f'Product "{item["name"]}" ran out of stock while the order was placed',
            )
        taken.append(item)

    logger.info("Order %s created for %s (%s items, total %s)", order["_id"], user["name"], len(items), total)
    return order


def get_order(database: Database, order_id: str) -> dict:
    order = database["order"].find_one({"_id": to_object_id(order_id)})
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


def update_order(database: Database, order_id: str, body: OrderUpdateBody) -> dict:
    order = get_order(database, order_id)
    data = body.model_dump(exclude_none=True)
    changes = {}

    if "orderItems" in data:
        # Cancellation gives back the items taken at creation, so they are fixed.
        raise HTTPException(
            status_code=400,
            detail="Order items cannot be changed; cancel the order and place a new one",
        )

    old_status = order.get("status")
    new_status = data.get("status")
    if old_status == ORDER_STATUS_CANCELLED and new_status and new_status != ORDER_STATUS_CANCELLED:
        raise HTTPException(status_code=400, detail="A cancelled order cannot be reopened")

    if "user" in data:
        user = find_user(database, data["user"])
        changes["user"] = user["_id"]
        changes["userName"] = user["name"]

    for field in ("totalPrice", "paymentMethod", "status"):
        if field in data:
            changes[field] = data[field]

    if new_status == ORDER_STATUS_CANCELLED:
        # Only the request that flips the status gives the stock back.
        claimed = database["order"].find_one_and_update(
            {"_id": order["_id"], "status": {"$ne": ORDER_STATUS_CANCELLED}},
            {"$set": {"status": ORDER_STATUS_CANCELLED, "updatedAt": utcnow()}},
        )
        if claimed is not None:
            restore_stock(database, claimed.get("orderItems", []))
            logger.info("Order %s cancelled, stock restored", order["_id"])

    filt = {"_id": order["_id"]}
    if new_status and new_status != ORDER_STATUS_CANCELLED:
        filt["status"] = {"$ne": ORDER_STATUS_CANCELLED}
    changes["updatedAt"] = utcnow()
    res = database["order"].update_one(filt, {"$set": changes})
    if res.matched_count == 0:
        if database["order"].find_one({"_id": order["_id"]}, {"_id": 1}) is None:
            raise HTTPException(status_code=404, detail="Order not found")
        raise HTTPException(status_code=400, detail="A cancelled order cannot be reopened")
    return database["order"].find_one({"_id": order["_id"]})


def delete_order(database: Database, order_id: str) -> dict:
    # Removing first means only one caller ever gets the document back.
    order = database["order"].find_one_and_delete({"_id": to_object_id(order_id)})
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    if order.get("status") != ORDER_STATUS_CANCELLED:
        restore_stock(database, order.get("orderItems", []))
    logger.info("Order %s deleted", order["_id"])
    return order


def find_orders(
    database: Database,
    page: int,
    limit,
    userName: Optional[str] = None,
    paymentMethod: Optional[str] = None,
    status: Optional[str] = None,
    startDate: Optional[str] = None,
    endDate: Optional[str] = None,
) -> dict:
    filt = {}
    if paymentMethod:
        filt["paymentMethod"] = paymentMethod
    if status:
        filt["status"] = status
    rng = created_at_range(startDate, endDate)
    if rng:
        filt["createdAt"] = rng
    if userName:
        ids = [u["_id"] for u in database["user"].find({"name": regex_contains(userName)}, {"_id": 1})]
        filt["user"] = {"$in": ids}

    result = get_page(database, "order", filt, page, limit, "orders", sort=[("createdAt", -1)])

    # Report the owner's current name rather than the copy taken at order time.
    user_ids = list({o["user"] for o in result["orders"] if o.get("user")})
    names = {
        u["_id"]: u["name"]
        for u in database["user"].find({"_id": {"$in": user_ids}}, {"name": 1})
    }
    for order in result["orders"]:
        order["userName"] = names.get(order.get("user"), "Unknown")
    return result


# ----------------------- Revenue -----------------------
def completed_match(start_date: Optional[str] = None, end_date: Optional[str] = None) -> dict:
    match = {"status": ORDER_STATUS_COMPLETED}
    rng = created_at_range(start_date, end_date)
    if rng:
        match["createdAt"] = rng
    return match


def total_revenue(database: Database) -> dict:
    rows = list(database["order"].aggregate([
        {"$match": completed_match()},
        {"$group": {
            "_id": None,
            "totalRevenue": {"$sum": "$totalPrice"},
            "totalOrders": {"$sum": 1},
        }},
    ]))
    if not rows:
        return {"totalRevenue": 0, "totalOrders": 0}
    return {"totalRevenue": rows[0]["totalRevenue"], "totalOrders": rows[0]["totalOrders"]}


def daily_revenue(database: Database, start_date: Optional[str] = None, end_date: Optional[str] = None) -> list:
    rows = database["order"].aggregate([
        {"$match": completed_match(start_date, end_date)},
        {"$group": {
            "_id": {
                "year": {"$year": "$createdAt"},
                "month": {"$month": "$createdAt"},
                "day": {"$dayOfMonth": "$createdAt"},
            },
            "dailyRevenue": {"$sum": "$totalPrice"},
            "dailyOrders": {"$sum": 1},
        }},
        {"$sort": {"_id.year": 1, "_id.month": 1, "_id.day": 1}},
    ])
    return [
        {
            "_id": f"{r['_id']['year']:04d}-{r['_id']['month']:02d}-{r['_id']['day']:02d}",
            "dailyRevenue": r["dailyRevenue"],
            "dailyOrders": r["dailyOrders"],
        }
        for r in rows
    ]


def monthly_revenue(database: Database) -> list:
    return list(database["order"].aggregate([
        {"$match": completed_match()},
        {"$group": {
            "_id": {"year": {"$year": "$createdAt"}, "month": {"$month": "$createdAt"}},
            "monthlyRevenue": {"$sum": "$totalPrice"},
            "monthlyOrders": {"$sum": 1},
        }},
        {"$sort": {"_id.year": 1, "_id.month": 1}},
    ]))
