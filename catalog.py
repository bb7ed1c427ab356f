"""
Brands, categories and payment methods share one shape: a unique ``name``
and an optional ``description``. ``named_resource_router`` builds the list,
get, create, update and delete routes for one such collection.

Products copy brand and category names, so renaming a brand or category
does not touch existing products.
"""
import logging
from typing import Optional, Sequence, Type

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field
from pymongo.database import Database

from auth import get_current_user, require_admin
from database import (
    create_document,
    get_db,
    get_page,
    regex_contains,
    serialize_doc,
    to_object_id,
    update_document,
)
from schemas import Brand, Category, PaymentMethod

logger = logging.getLogger(__name__)


class NamedUpdateBody(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None


def named_resource_router(
    collection: str,
    label: str,
    items_key: str,
    model: Type[BaseModel],
    filter_fields: Sequence[str] = ("name",),
) -> APIRouter:
    router = APIRouter()

    def find_or_404(database: Database, item_id: str) -> dict:
        doc = database[collection].find_one({"_id": to_object_id(item_id)})
        if not doc:
            raise HTTPException(status_code=404, detail=f"{label} not found")
        return doc

    @router.get("")
    def list_items(
        request: Request,
        page: int = Query(1, ge=1),
        limit: Optional[str] = None,
        database: Database = Depends(get_db),
        user=Depends(get_current_user),
    ):
        filt = {}
        for field in filter_fields:
            value = request.query_params.get(field)
            if value:
                filt[field] = regex_contains(value)
        result = get_page(database, collection, filt, page, limit, items_key)
        result[items_key] = serialize_doc(result[items_key])
        return result

    @router.get("/{item_id}")
    def get_item(item_id: str, database: Database = Depends(get_db), user=Depends(get_current_user)):
        return serialize_doc(find_or_404(database, item_id))

    @router.post("", status_code=201)
    def create_item(body: model, database: Database = Depends(get_db), user=Depends(require_admin)):
        if database[collection].find_one({"name": body.name}):
            raise HTTPException(status_code=400, detail=f"{label} name already exists")
        doc = create_document(database, collection, body)
        logger.info("%s %r created by %s", label, body.name, user.get("email"))
        return serialize_doc(doc)

    @router.put("/{item_id}")
    def update_item(
        item_id: str,
        body: NamedUpdateBody,
        database: Database = Depends(get_db),
        user=Depends(require_admin),
    ):
        doc = find_or_404(database, item_id)
        changes = body.model_dump(exclude_none=True)
        if "name" in changes:
            clash = database[collection].find_one({"name": changes["name"], "_id": {"$ne": doc["_id"]}})
            if clash:
                raise HTTPException(status_code=400, detail=f"{label} name already exists")
        updated = update_document(database, collection, doc["_id"], changes)
        if updated is None:
            raise HTTPException(status_code=404, detail=f"{label} not found")
        return serialize_doc(updated)

    @router.delete("/{item_id}")
    def delete_item(item_id: str, database: Database = Depends(get_db), user=Depends(require_admin)):
        res = database[collection].delete_one({"_id": to_object_id(item_id)})
        if res.deleted_count == 0:
            raise HTTPException(status_code=404, detail=f"{label} not found")
        logger.info("%s %s deleted by %s", label, item_id, user.get("email"))
        return {"message": f"{label} deleted"}

    return router


brand_router = named_resource_router("brand", "Brand", "brands", Brand)
category_router = named_resource_router("category", "Category", "categories", Category)
payment_method_router = named_resource_router(
    "payment_method", "Payment method", "methods", PaymentMethod, filter_fields=("name", "description")
)
