from __future__ import annotations

from typing import Any, Dict, List, Optional

from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from ..auth import AuthClient
from ..context import AppContext
from ..domain import analytics
from ..errors import AuthError, ScanError, ScanParseError, ValidationError
from ..logging import get_logger
from ..scan.extraction import build_data_url
from ..scan.workflow import payload_size
from ..stores.checkout import checkout

LOG = get_logger("api")

DEFAULT_ORIGINS = ["http://localhost:5173", "http://127.0.0.1:5173"]


async def _body(request: Request) -> Dict[str, Any]:
    try:
        data = await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid JSON body") from exc
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="JSON body must be an object")
    return data


def _ids(data: Dict[str, Any]) -> List[str]:
    ids = data.get("ids")
    if not isinstance(ids, list) or not all(isinstance(i, str) for i in ids):
        raise HTTPException(status_code=400, detail="'ids' must be a list of strings")
    return ids


def _number(data: Dict[str, Any], key: str, *, default: Optional[float] = None) -> Optional[float]:
    value = data.get(key, default)
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=f"'{key}' must be a number") from exc


def create_app(context: AppContext, *, allow_origins: Optional[List[str]] = None) -> Starlette:
    """Create a Starlette app exposing the shopping stores as a JSON API.

    Every JSON response carries the notifications raised while handling it.
    """

    lists = context.lists
    receipts = context.receipts
    prices = context.prices
    workflow = context.workflow
    notifier = context.session.notifier

    def respond(payload: Dict[str, Any], status_code: int = 200) -> JSONResponse:
        body = dict(payload)
        body["notifications"] = [n.as_dict() for n in notifier.drain()]
        return JSONResponse(body, status_code=status_code)

    def list_state() -> Dict[str, Any]:
        if lists.current_list is None:
            lists.bootstrap()
        current = lists.current_list
        return {
            "list": current.as_dict() if current is not None else None,
            "categories": [cat.as_dict() for cat in lists.categories],
            "subtotal": round(lists.calculate_subtotal(), 2),
        }

    def mutation(ok: Any, extra: Optional[Dict[str, Any]] = None) -> JSONResponse:
        payload = {"ok": bool(ok)}
        payload.update(list_state())
        payload.update(extra or {})
        return respond(payload, 200 if ok else 400)

    def staged_state() -> Dict[str, Any]:
        staged = workflow.staged
        return {"state": workflow.state, "receipt": staged.as_dict() if staged is not None else None}

    async def health(_: Request) -> JSONResponse:
        return respond({"status": "ok", "user_id": context.session.user_id})

    # ---------- lists ----------
    async def active_list(_: Request) -> JSONResponse:
        return respond(list_state())

    async def all_lists(_: Request) -> JSONResponse:
        return respond({"items": [sl.as_dict() for sl in lists.get_all_lists()]})

    async def create_list(request: Request) -> JSONResponse:
        data = await _body(request)
        created = lists.create_custom_list(str(data.get("name") or ""))
        return mutation(created is not None)

    async def activate_list(request: Request) -> JSONResponse:
        switched = lists.switch_list(request.path_params["list_id"])
        return mutation(switched is not None)

    async def rename_list(request: Request) -> JSONResponse:
        data = await _body(request)
        return mutation(lists.rename_list(request.path_params["list_id"], str(data.get("name") or "")))

    async def delete_list(request: Request) -> JSONResponse:
        return mutation(lists.delete_list(request.path_params["list_id"]))

    # ---------- categories ----------
    async def add_category(request: Request) -> JSONResponse:
        data = await _body(request)
        return mutation(lists.add_category(str(data.get("name") or "")) is not None)

    async def rename_category(request: Request) -> JSONResponse:
        data = await _body(request)
        return mutation(lists.rename_category(request.path_params["category_id"], str(data.get("name") or "")))

    async def delete_category(request: Request) -> JSONResponse:
        return mutation(lists.delete_category(request.path_params["category_id"]))

    async def reorder_categories(request: Request) -> JSONResponse:
        data = await _body(request)
        return mutation(await run_in_threadpool(lists.reorder_categories, _ids(data)))

    # ---------- items ----------
    async def add_item(request: Request) -> JSONResponse:
        data = await _body(request)
        quantity = _number(data, "quantity", default=1)
        item = lists.add_item(
            request.path_params["category_id"], str(data.get("name") or ""), int(quantity or 0)
        )
        return mutation(item is not None)

    async def reorder_items(request: Request) -> JSONResponse:
        data = await _body(request)
        ok = await run_in_threadpool(lists.reorder_items, request.path_params["category_id"], _ids(data))
        return mutation(ok)

    async def update_item(request: Request) -> JSONResponse:
        item_id = request.path_params["item_id"]
        data = await _body(request)
        ok = True
        if "name" in data:
            ok = lists.rename_item(item_id, str(data.get("name") or "")) and ok
        if "quantity" in data:
            ok = lists.update_quantity(item_id, int(_number(data, "quantity") or 0)) and ok
        if "unit_price" in data:
            price = _number(data, "unit_price")
            if price is None:
                raise HTTPException(status_code=400, detail="'unit_price' must be a number")
            ok = lists.update_price(item_id, price, data.get("market")) and ok
        return mutation(ok)

    async def toggle_item(request: Request) -> JSONResponse:
        checked = lists.toggle_checked(request.path_params["item_id"])
        return mutation(checked is not None, {"is_checked": checked})

    async def delete_item(request: Request) -> JSONResponse:
        return mutation(lists.delete_item(request.path_params["item_id"]))

    # ---------- receipts ----------
    async def list_receipts(_: Request) -> JSONResponse:
        return respond({"items": [r.as_dict() for r in receipts.fetch()]})

    async def create_receipt(request: Request) -> JSONResponse:
        data = await _body(request)
        title = str(data.get("title") or "").strip()
        if not title:
            raise HTTPException(status_code=400, detail="'title' is required")
        items = data.get("items") or []
        if not isinstance(items, list):
            raise HTTPException(status_code=400, detail="'items' must be a list")
        receipt = receipts.create_receipt(
            title,
            _number(data, "total_amount", default=0.0) or 0.0,
            data.get("payment_method"),
            bool(data.get("has_discount")),
            _number(data, "discount_amount", default=0.0) or 0.0,
            data.get("market"),
            [i for i in items if isinstance(i, dict)],
            list_id=data.get("list_id"),
            purchase_date=data.get("purchase_date"),
        )
        if receipt is None:
            return respond({"ok": False}, 400)
        return respond({"ok": True, "receipt": receipt.as_dict()}, 201)

    async def delete_receipt(request: Request) -> JSONResponse:
        ok = receipts.delete_receipt(request.path_params["receipt_id"])
        return respond({"ok": ok}, 200 if ok else 400)

    async def do_checkout(request: Request) -> JSONResponse:
        data = await _body(request)
        receipt = checkout(
            lists,
            receipts,
            title=str(data.get("title") or ""),
            payment_method=str(data.get("payment_method") or ""),
            total_amount=_number(data, "total_amount"),
            has_discount=bool(data.get("has_discount")),
            discount_amount=_number(data, "discount_amount", default=0.0) or 0.0,
            market=str(data.get("market") or ""),
            card_brand=data.get("card_brand"),
        )
        if receipt is None:
            return respond({"ok": False}, 400)
        return respond({"ok": True, "receipt": receipt.as_dict()}, 201)

    # ---------- prices & analytics ----------
    async def price_history(request: Request) -> JSONResponse:
        item_name = request.query_params.get("item")
        entries = prices.fetch_for_item(item_name) if item_name else prices.fetch_all()
        return respond({"items": [e.as_dict() for e in entries]})

    async def analytics_summary(_: Request) -> JSONResponse:
        return respond(analytics.summarize(receipts.fetch(), prices.fetch_all()))

    # ---------- scanning ----------
    async def scan(request: Request) -> JSONResponse:
        data = await _body(request)
        image = data.get("imageBase64")
        if not image or not isinstance(image, str):
            return respond({"error": "Image data is required"}, 400)
        if payload_size(image) > workflow.max_image_bytes:
            return respond({"error": "Imagem muito grande"}, 413)
        try:
            scanned = await run_in_threadpool(context.scanner.scan, build_data_url(image))
        except ScanParseError as exc:
            return respond({"error": "Failed to parse receipt data", "raw": exc.raw}, 500)
        except ScanError as exc:
            LOG.error(f"Scan failed: {exc}")
            return respond({"error": str(exc)}, 500)
        return respond({"success": True, "data": scanned.as_dict()})

    async def scan_session(_: Request) -> JSONResponse:
        return respond(staged_state())

    async def scan_submit(request: Request) -> JSONResponse:
        data = await _body(request)
        image = data.get("imageBase64")
        if not image or not isinstance(image, str):
            return respond({"error": "Image data is required"}, 400)
        staged = await run_in_threadpool(workflow.submit_image, image, str(data.get("mimeType") or "image/jpeg"))
        payload = staged_state()
        if staged is None and workflow.last_raw is not None:
            payload["raw"] = workflow.last_raw
        return respond(payload, 200 if staged is not None else 422)

    async def scan_edit(request: Request) -> JSONResponse:
        data = await _body(request)
        try:
            if "market" in data:
                workflow.set_market(data.get("market"))
            if "payment_method" in data:
                workflow.set_payment_method(data.get("payment_method"))
            if "total_amount" in data:
                workflow.set_total(_number(data, "total_amount") or 0.0)
        except ScanError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return respond(staged_state())

    async def scan_edit_item(request: Request) -> JSONResponse:
        index = int(request.path_params["index"])
        data = await _body(request)
        try:
            for field_name in ("name", "quantity", "unit_price", "total_price"):
                if field_name in data:
                    workflow.update_item(index, field_name, data[field_name])
        except ScanError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except IndexError as exc:
            raise HTTPException(status_code=404, detail="Item not found") from exc
        except (TypeError, ValueError) as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return respond(staged_state())

    async def scan_remove_item(request: Request) -> JSONResponse:
        index = int(request.path_params["index"])
        try:
            workflow.remove_item(index)
        except ScanError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except IndexError as exc:
            raise HTTPException(status_code=404, detail="Item not found") from exc
        return respond(staged_state())

    async def scan_commit(_: Request) -> JSONResponse:
        try:
            receipt = await run_in_threadpool(workflow.commit)
        except ScanError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        if receipt is None:
            return respond({"ok": False, **staged_state()}, 400)
        payload = {"ok": True, **staged_state()}
        payload["receipt"] = receipt.as_dict()
        return respond(payload, 201)

    async def scan_reset(_: Request) -> JSONResponse:
        workflow.reset()
        return respond(staged_state())

    # ---------- auth ----------
    def auth_client() -> AuthClient:
        if context.auth is None:
            raise HTTPException(status_code=503, detail="Sign-in is not configured")
        return context.auth

    def signed_in_state() -> Dict[str, Any]:
        return {"user_id": context.session.user_id, "signed_in": context.session.access_token is not None}

    async def sign_in(request: Request) -> JSONResponse:
        client = auth_client()
        data = await _body(request)
        try:
            auth_session = await run_in_threadpool(
                client.sign_in_with_password, str(data.get("email") or ""), str(data.get("password") or "")
            )
        except ValidationError as exc:
            notifier.warning(str(exc))
            return respond({"ok": False, **signed_in_state()}, 400)
        except AuthError as exc:
            notifier.error(str(exc))
            return respond({"ok": False, **signed_in_state()}, 401)
        context.sign_in(auth_session)
        notifier.success("Bem-vindo de volta!")
        return respond({"ok": True, **signed_in_state()})

    async def sign_up(request: Request) -> JSONResponse:
        client = auth_client()
        data = await _body(request)
        try:
            auth_session = await run_in_threadpool(
                client.sign_up, str(data.get("email") or ""), str(data.get("password") or "")
            )
        except ValidationError as exc:
            notifier.warning(str(exc))
            return respond({"ok": False, **signed_in_state()}, 400)
        except AuthError as exc:
            notifier.error(str(exc))
            return respond({"ok": False, **signed_in_state()}, 400)
        if auth_session is not None:
            context.sign_in(auth_session)
        notifier.success("Conta criada com sucesso!")
        return respond({"ok": True, **signed_in_state()}, 201)

    async def sign_out(_: Request) -> JSONResponse:
        context.sign_out()
        return respond({"ok": True, **signed_in_state()})

    async def http_error(_: Request, exc: HTTPException) -> JSONResponse:
        return respond({"detail": exc.detail}, exc.status_code)

    routes = [
        Route("/api/health", health, methods=["GET"]),
        Route("/api/auth/sign-in", sign_in, methods=["POST"]),
        Route("/api/auth/sign-up", sign_up, methods=["POST"]),
        Route("/api/auth/sign-out", sign_out, methods=["POST"]),
        Route("/api/list", active_list, methods=["GET"]),
        Route("/api/lists", all_lists, methods=["GET"]),
        Route("/api/lists", create_list, methods=["POST"]),
        Route("/api/lists/{list_id:str}/activate", activate_list, methods=["POST"]),
        Route("/api/lists/{list_id:str}", rename_list, methods=["PATCH"]),
        Route("/api/lists/{list_id:str}", delete_list, methods=["DELETE"]),
        Route("/api/categories", add_category, methods=["POST"]),
        Route("/api/categories/order", reorder_categories, methods=["PUT"]),
        Route("/api/categories/{category_id:str}", rename_category, methods=["PATCH"]),
        Route("/api/categories/{category_id:str}", delete_category, methods=["DELETE"]),
        Route("/api/categories/{category_id:str}/items", add_item, methods=["POST"]),
        Route("/api/categories/{category_id:str}/items/order", reorder_items, methods=["PUT"]),
        Route("/api/items/{item_id:str}", update_item, methods=["PATCH"]),
        Route("/api/items/{item_id:str}", delete_item, methods=["DELETE"]),
        Route("/api/items/{item_id:str}/toggle", toggle_item, methods=["POST"]),
        Route("/api/receipts", list_receipts, methods=["GET"]),
        Route("/api/receipts", create_receipt, methods=["POST"]),
        Route("/api/receipts/{receipt_id:str}", delete_receipt, methods=["DELETE"]),
        Route("/api/checkout", do_checkout, methods=["POST"]),
        Route("/api/price-history", price_history, methods=["GET"]),
        Route("/api/analytics", analytics_summary, methods=["GET"]),
        Route("/api/scan", scan, methods=["POST"]),
        Route("/api/scan/session", scan_session, methods=["GET"]),
        Route("/api/scan/session", scan_submit, methods=["POST"]),
        Route("/api/scan/session", scan_edit, methods=["PATCH"]),
        Route("/api/scan/session", scan_reset, methods=["DELETE"]),
        Route("/api/scan/session/items/{index:int}", scan_edit_item, methods=["PATCH"]),
        Route("/api/scan/session/items/{index:int}", scan_remove_item, methods=["DELETE"]),
        Route("/api/scan/session/commit", scan_commit, methods=["POST"]),
    ]

    app = Starlette(debug=False, routes=routes, exception_handlers={HTTPException: http_error})

    origins = allow_origins
    if origins is None and context.config is not None:
        origins = context.config.allow_origins
    origins = origins or DEFAULT_ORIGINS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if "*" in origins else origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    LOG.info(f"API ready with {len(routes)} routes; CORS origins: {', '.join(origins)}")
    return app


__all__ = ["create_app"]
