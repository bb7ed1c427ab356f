import logging
import os
import unicodedata
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import (
    BackgroundTasks,
    Depends,
    FastAPI,
    File,
    Form,
    HTTPException,
    Query,
    UploadFile,
    WebSocket,
    WebSocketDisconnect,
)
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, EmailStr, Field, ValidationError
from pymongo import ASCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError
from starlette.concurrency import run_in_threadpool

import orders as order_service
from auth import (
    create_token,
    get_current_user,
    hash_password,
    require_admin,
    resolve_token_user,
    verify_password,
)
from catalog import brand_router, category_router, payment_method_router
from config import ADMIN_EMAIL, ADMIN_NAME, ADMIN_PASSWORD, PORT, UPLOAD_DIR
from database import (
    create_document,
    db,
    get_db,
    get_page,
    paginate_list,
    regex_contains,
    serialize_doc,
    to_object_id,
    update_document,
)
from notifications import ConnectionRegistry, get_registry
from orders import OrderUpdateBody
from schemas import Order as OrderSchema, Product as ProductSchema, Shipping as ShippingSchema, User as UserSchema
from uploads import save_image

logger = logging.getLogger(__name__)


def ensure_indexes(database: Database):
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["order"].create_index([("createdAt", ASCENDING)])


def ensure_admin(database: Database):
    if not (ADMIN_EMAIL and ADMIN_PASSWORD):
        return
    if database["user"].find_one({"email": ADMIN_EMAIL}):
        return
    admin = UserSchema(name=ADMIN_NAME, email=ADMIN_EMAIL, password=hash_password(ADMIN_PASSWORD), role="admin")
    create_document(database, "user", admin)
    logger.info("Created admin account %s", ADMIN_EMAIL)


@asynccontextmanager
async def lifespan(app: FastAPI):
    ensure_indexes(db)
    ensure_admin(db)
    yield


app = FastAPI(title="Shop Admin Backend", lifespan=lifespan)
app.state.registry = ConnectionRegistry()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.mount("/uploads", StaticFiles(directory=UPLOAD_DIR), name="uploads")


# ----------------------- Errors -----------------------
def validation_payload(errors) -> dict:
    items = [{"loc": [str(p) for p in e.get("loc", ())], "msg": e.get("msg", "")} for e in errors]
    detail = "; ".join(f"{'.'.join(e['loc'])}: {e['msg']}" for e in items) or "Invalid request"
    return {"detail": detail, "errors": items}


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content=validation_payload(exc.errors()))


@app.exception_handler(ValidationError)
async def model_validation_handler(request, exc: ValidationError):
    return JSONResponse(status_code=400, content=validation_payload(exc.errors()))


@app.exception_handler(DuplicateKeyError)
async def duplicate_key_handler(request, exc: DuplicateKeyError):
    return JSONResponse(status_code=400, content={"detail": "Duplicate value"})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error", "error": str(exc)})


# ----------------------- Models -----------------------
class LoginBody(BaseModel):
    email: EmailStr
    password: str


class UserCreateBody(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=1)
    phone: Optional[str] = None
    role: Optional[str] = Field("user", pattern="^(admin|user)$")


class UserUpdateBody(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=1)
    phone: Optional[str] = None
    role: Optional[str] = Field(None, pattern="^(admin|user)$")


class ShippingUpdateBody(BaseModel):
    order: Optional[str] = None
    receiverName: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    postalCode: Optional[str] = None
    country: Optional[str] = None
    shippingStatus: Optional[str] = Field(None, pattern="^(Pending|Shipping|Delivered)$")


# ----------------------- Health -----------------------
@app.get("/")
def root():
    return {"message": "Shop admin API running"}


@app.get("/api/health")
def health():
    return {"message": "Backend OK"}


@app.get("/test")
def test_database(database: Database = Depends(get_db)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        if database is not None:
            response["collections"] = database.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# ----------------------- Auth -----------------------
@app.post("/api/auth/login")
def login(body: LoginBody, database: Database = Depends(get_db)):
    user = database["user"].find_one({"email": body.email})
    if not user or not verify_password(body.password, user.get("password", "")):
        logger.warning("Failed login for %s", body.email)
        raise HTTPException(status_code=400, detail="Invalid email or password")
    suser = serialize_doc(user)
    token = create_token({"id": suser["id"], "role": suser.get("role", "user")})
    logger.info("User %s logged in", body.email)
    return {
        "message": "Login successful",
        "user": {"id": suser["id"], "name": suser["name"], "email": suser["email"], "role": suser.get("role", "user")},
        "token": token,
    }


@app.get("/api/auth/me")
def me(user=Depends(get_current_user)):
    return user


# ----------------------- Users -----------------------
def fold(text: Optional[str]) -> str:
    """Lowercase and strip diacritics so "Nguyễn" matches "nguyen"."""
    decomposed = unicodedata.normalize("NFD", (text or "").lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


@app.get("/api/users")
def list_users(
    name: Optional[str] = None,
    email: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: Optional[str] = None,
    database: Database = Depends(get_db),
    user=Depends(require_admin),
):
    users = list(database["user"].find({}, {"password": 0}))
    if name:
        needle = fold(name)
        users = [u for u in users if needle in fold(u.get("name"))]
    if email:
        needle = fold(email)
        users = [u for u in users if needle in fold(u.get("email"))]
    result = paginate_list(users, page, limit, "users")
    result["users"] = serialize_doc(result["users"])
    return result


@app.get("/api/users/{user_id}")
def get_user(user_id: str, database: Database = Depends(get_db), user=Depends(require_admin)):
    doc = database["user"].find_one({"_id": to_object_id(user_id)}, {"password": 0})
    if not doc:
        raise HTTPException(status_code=404, detail="User not found")
    return serialize_doc(doc)


@app.post("/api/users", status_code=201)
def create_user(body: UserCreateBody, database: Database = Depends(get_db), user=Depends(require_admin)):
    if database["user"].find_one({"email": body.email}):
        raise HTTPException(status_code=400, detail="Email already registered")
    new_user = UserSchema(
        name=body.name,
        email=body.email,
        password=hash_password(body.password),
        phone=body.phone,
        role=body.role or "user",
    )
    doc = create_document(database, "user", new_user)
    logger.info("User %s created by %s", body.email, user.get("email"))
    return serialize_doc(doc)


@app.put("/api/users/{user_id}")
def update_user(user_id: str, body: UserUpdateBody, database: Database = Depends(get_db), user=Depends(require_admin)):
    oid = to_object_id(user_id)
    if not database["user"].find_one({"_id": oid}, {"_id": 1}):
        raise HTTPException(status_code=404, detail="User not found")
    update = body.model_dump(exclude_none=True)
    if "email" in update:
        clash = database["user"].find_one({"email": update["email"], "_id": {"$ne": oid}})
        if clash:
            raise HTTPException(status_code=400, detail="Email already registered")
    if "password" in update:
        update["password"] = hash_password(update["password"])
    updated = update_document(database, "user", oid, update)
    if updated is None:
        raise HTTPException(status_code=404, detail="User not found")
    return serialize_doc(updated)


@app.delete("/api/users/{user_id}")
def delete_user(user_id: str, database: Database = Depends(get_db), user=Depends(require_admin)):
    res = database["user"].delete_one({"_id": to_object_id(user_id)})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="User not found")
    logger.info("User %s deleted by %s", user_id, user.get("email"))
    return {"message": "User deleted"}


# ----------------------- Products -----------------------
@app.get("/api/products")
def list_products(
    name: Optional[str] = None,
    categoryName: Optional[str] = None,
    brandName: Optional[str] = None,
    minPrice: Optional[float] = None,
    maxPrice: Optional[float] = None,
    page: int = Query(1, ge=1),
    limit: Optional[str] = None,
    database: Database = Depends(get_db),
    user=Depends(get_current_user),
):
    filt = {}
    if name:
        filt["name"] = regex_contains(name)
    if categoryName:
        filt["categoryName"] = regex_contains(categoryName)
    if brandName:
        filt["brandName"] = regex_contains(brandName)
    if minPrice is not None or maxPrice is not None:
        filt["price"] = {}
        if minPrice is not None:
            filt["price"]["$gte"] = minPrice
        if maxPrice is not None:
            filt["price"]["$lte"] = maxPrice
    result = get_page(database, "product", filt, page, limit, "products")
    result["products"] = serialize_doc(result["products"])
    return result


@app.get("/api/products/{product_id}")
def get_product(product_id: str, database: Database = Depends(get_db), user=Depends(get_current_user)):
    item = database["product"].find_one({"_id": to_object_id(product_id)})
    if not item:
        raise HTTPException(status_code=404, detail="Product not found")
    return serialize_doc(item)


@app.post("/api/products", status_code=201)
def create_product(
    name: str = Form(..., min_length=1),
    price: float = Form(..., ge=0),
    categoryName: str = Form(..., min_length=1),
    brandName: str = Form(..., min_length=1),
    description: Optional[str] = Form(None),
    countInStock: int = Form(0, ge=0),
    image: Optional[UploadFile] = File(None),
    database: Database = Depends(get_db),
    user=Depends(require_admin),
):
    product = ProductSchema(
        name=name,
        price=price,
        description=description,
        countInStock=countInStock,
        categoryName=categoryName,
        brandName=brandName,
        image=save_image(image) or "",
    )
    doc = create_document(database, "product", product)
    logger.info("Product %r created by %s", name, user.get("email"))
    return serialize_doc(doc)


@app.put("/api/products/{product_id}")
def update_product(
    product_id: str,
    name: Optional[str] = Form(None, min_length=1),
    price: Optional[float] = Form(None, ge=0),
    categoryName: Optional[str] = Form(None, min_length=1),
    brandName: Optional[str] = Form(None, min_length=1),
    description: Optional[str] = Form(None),
    countInStock: Optional[int] = Form(None, ge=0),
    image: Optional[UploadFile] = File(None),
    database: Database = Depends(get_db),
    user=Depends(require_admin),
):
    oid = to_object_id(product_id)
    if not database["product"].find_one({"_id": oid}, {"_id": 1}):
        raise HTTPException(status_code=404, detail="Product not found")
    update = {
        "name": name,
        "price": price,
        "description": description,
        "countInStock": countInStock,
        "categoryName": categoryName,
        "brandName": brandName,
    }
    update = {k: v for k, v in update.items() if v is not None}
    image_url = save_image(image)
    if image_url:
        update["image"] = image_url
    updated = update_document(database, "product", oid, update)
    if updated is None:
        raise HTTPException(status_code=404, detail="Product not found")
    return serialize_doc(updated)


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, database: Database = Depends(get_db), user=Depends(require_admin)):
    res = database["product"].delete_one({"_id": to_object_id(product_id)})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Product not found")
    logger.info("Product %s deleted by %s", product_id, user.get("email"))
    return {"message": "Product deleted"}


# ----------------------- Orders -----------------------
@app.get("/api/orders")
def list_orders(
    userName: Optional[str] = None,
    paymentMethod: Optional[str] = None,
    status: Optional[str] = None,
    startDate: Optional[str] = None,
    endDate: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: Optional[str] = None,
    database: Database = Depends(get_db),
    user=Depends(get_current_user),
):
    result = order_service.find_orders(
        database, page, limit,
        userName=userName, paymentMethod=paymentMethod, status=status,
        startDate=startDate, endDate=endDate,
    )
    result["orders"] = serialize_doc(result["orders"])
    return result


@app.post("/api/orders", status_code=201)
def create_order(
    body: OrderSchema,
    background_tasks: BackgroundTasks,
    database: Database = Depends(get_db),
    registry: ConnectionRegistry = Depends(get_registry),
    user=Depends(get_current_user),
):
    order = serialize_doc(order_service.create_order(database, body))
    background_tasks.add_task(registry.broadcast, "orderCreated", order)
    return order


@app.get("/api/orders/revenue/total")
def revenue_total(database: Database = Depends(get_db), user=Depends(require_admin)):
    return order_service.total_revenue(database)


@app.get("/api/orders/revenue/daily")
def revenue_daily(
    startDate: Optional[str] = None,
    endDate: Optional[str] = None,
    database: Database = Depends(get_db),
    user=Depends(require_admin),
):
    return order_service.daily_revenue(database, startDate, endDate)


@app.get("/api/orders/revenue/monthly")
def revenue_monthly(database: Database = Depends(get_db), user=Depends(require_admin)):
    return order_service.monthly_revenue(database)


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, database: Database = Depends(get_db), user=Depends(get_current_user)):
    return serialize_doc(order_service.get_order(database, order_id))


@app.put("/api/orders/{order_id}")
def update_order(order_id: str, body: OrderUpdateBody, database: Database = Depends(get_db), user=Depends(require_admin)):
    return serialize_doc(order_service.update_order(database, order_id, body))


@app.delete("/api/orders/{order_id}")
def delete_order(order_id: str, database: Database = Depends(get_db), user=Depends(require_admin)):
    order_service.delete_order(database, order_id)
    return {"message": "Order deleted and stock restored"}


# ----------------------- Catalog -----------------------
app.include_router(brand_router, prefix="/api/brands", tags=["brands"])
app.include_router(category_router, prefix="/api/categories", tags=["categories"])
app.include_router(payment_method_router, prefix="/api/payment-methods", tags=["payment-methods"])


# ----------------------- Shippings -----------------------
def attach_orders(database: Database, shippings: list) -> list:
    """Embed the referenced order in each shipping, or None if it is gone."""
    ids = list({s["order"] for s in shippings if s.get("order")})
    found = {o["_id"]: o for o in database["order"].find({"_id": {"$in": ids}})}
    for s in shippings:
        s["order"] = found.get(s.get("order"))
    return shippings


@app.get("/api/shippings")
def list_shippings(
    receiverName: Optional[str] = None,
    address: Optional[str] = None,
    status: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: Optional[str] = None,
    database: Database = Depends(get_db),
    user=Depends(get_current_user),
):
    filt = {}
    if receiverName:
        filt["receiverName"] = regex_contains(receiverName)
    if address:
        filt["address"] = regex_contains(address)
    if status:
        filt["shippingStatus"] = regex_contains(status)
    result = get_page(database, "shipping", filt, page, limit, "shippings")
    result["shippings"] = serialize_doc(attach_orders(database, result["shippings"]))
    return result


@app.get("/api/shippings/{shipping_id}")
def get_shipping(shipping_id: str, database: Database = Depends(get_db), user=Depends(get_current_user)):
    doc = database["shipping"].find_one({"_id": to_object_id(shipping_id)})
    if not doc:
        raise HTTPException(status_code=404, detail="Shipping not found")
    return serialize_doc(attach_orders(database, [doc])[0])


@app.post("/api/shippings", status_code=201)
def create_shipping(body: ShippingSchema, database: Database = Depends(get_db), user=Depends(require_admin)):
    order_id = to_object_id(body.order)
    if not database["order"].find_one({"_id": order_id}, {"_id": 1}):
        raise HTTPException(status_code=404, detail="Order not found")
    data = body.model_dump()
    data["order"] = order_id
    doc = create_document(database, "shipping", data)
    return serialize_doc(doc)


@app.put("/api/shippings/{shipping_id}")
def update_shipping(
    shipping_id: str,
    body: ShippingUpdateBody,
    database: Database = Depends(get_db),
    user=Depends(require_admin),
):
    update = body.model_dump(exclude_none=True)
    if "order" in update:
        update["order"] = to_object_id(update["order"])
        if not database["order"].find_one({"_id": update["order"]}, {"_id": 1}):
            raise HTTPException(status_code=404, detail="Order not found")
    updated = update_document(database, "shipping", to_object_id(shipping_id), update)
    if updated is None:
        raise HTTPException(status_code=404, detail="Shipping not found")
    return serialize_doc(updated)


@app.delete("/api/shippings/{shipping_id}")
def delete_shipping(shipping_id: str, database: Database = Depends(get_db), user=Depends(require_admin)):
    res = database["shipping"].delete_one({"_id": to_object_id(shipping_id)})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Shipping not found")
    return {"message": "Shipping deleted"}


# ----------------------- Notifications -----------------------
@app.websocket("/ws")
async def order_events(
    websocket: WebSocket,
    token: Optional[str] = None,
    database: Database = Depends(get_db),
    registry: ConnectionRegistry = Depends(get_registry),
):
    try:
        await run_in_threadpool(resolve_token_user, database, token)
    except HTTPException:
        await websocket.close(code=1008)
        return
    await registry.connect(websocket)
    try:
        while True:
            # Dashboards only listen; incoming frames are ignored.
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        registry.disconnect(websocket)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
