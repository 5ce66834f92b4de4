"""KinCanvas - Family Tree Canvas Backend.

FastAPI server holding the canvas state of each open family tree, backed by a
hosted Supabase project for records and sign-in.
"""

import logging
from collections import OrderedDict
from contextlib import asynccontextmanager
from dataclasses import dataclass

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("kincanvas")

import httpx
from fastapi import Depends, FastAPI, File, Header, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field

from canvas import CanvasController, InvalidInput
from config import load_settings
from connect_mode import LinkRejected
from gedcom_io import import_summary
from models import AuthSession, DisplayGraph, NodeLayout, RelationshipType, Tree, User
from services import (
    AuthError,
    DevIdentity,
    IdentityProvider,
    MemoryStore,
    RecordStore,
    SIGNED_OUT,
    StoreError,
    SupabaseIdentity,
    SupabaseStore,
)
from trees import create_tree, ensure_default_tree, get_tree

settings = load_settings()
logging.getLogger().setLevel(settings.log_level)

# Global state
http_client: httpx.AsyncClient | None = None
identity: IdentityProvider | None = None
memory_store: MemoryStore | None = None
open_canvases: OrderedDict[tuple[str, str], CanvasController] = OrderedDict()


def _forget_user_canvases(event: str, user: User | None) -> None:
    """Drop a user's open canvases when they sign out."""
    if event != SIGNED_OUT or user is None:
        return
    for key in [k for k in open_canvases if k[0] == user.id]:
        del open_canvases[key]
    logger.info(f"Closed canvases of {user.id} after sign-out")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - wire up the identity provider and record store."""
    global http_client, identity, memory_store

    if settings.dev_bypass_auth:
        logger.warning("Auth bypass enabled: using dev user and in-memory store")
        identity = DevIdentity()
        memory_store = MemoryStore()
    elif settings.has_backend:
        logger.info(f"Using Supabase backend at {settings.supabase_url}")
        http_client = httpx.AsyncClient(timeout=settings.http_timeout)
        identity = SupabaseIdentity(settings.supabase_url, settings.supabase_anon_key, http_client)
        memory_store = None
    else:
        raise RuntimeError(
            "SUPABASE_URL and SUPABASE_ANON_KEY must be set "
            "(or KINCANVAS_DEV_BYPASS_AUTH=true for local development)"
        )

    identity.on_auth_state_change(_forget_user_canvases)

    yield

    # Shutdown
    open_canvases.clear()
    if http_client:
        logger.info("Closing HTTP client...")
        await http_client.aclose()
        http_client = None


# Create FastAPI app
app = FastAPI(
    title="KinCanvas",
    description="Family tree canvas editor backed by Supabase",
    version="1.0.0",
    lifespan=lifespan,
)

# Configure CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StoreError)
async def store_error_handler(request, exc: StoreError):
    return JSONResponse(status_code=502, content={"detail": exc.message})


@app.exception_handler(InvalidInput)
async def invalid_input_handler(request, exc: InvalidInput):
    logger.warning(f"Rejected input on {request.url.path}: {exc}")
    return JSONResponse(status_code=400, content={"detail": str(exc)})


# Request/Response models
class LoginRequest(BaseModel):
    email: str
    password: str


class EmailRequest(BaseModel):
    email: str


class PasswordRequest(BaseModel):
    password: str = Field(min_length=6)
    confirm_password: str | None = None


class TreeCreateRequest(BaseModel):
    name: str | None = None


class TreeRenameRequest(BaseModel):
    """Tree title edit. `cancel` is the Escape key: keep the stored name."""
    name: str | None = None
    cancel: bool = False


class MemberForm(BaseModel):
    name: str
    birth_year: str | int | None = None


class PositionRequest(BaseModel):
    x: float
    y: float


class LayoutRequest(BaseModel):
    layout: dict[str, NodeLayout] = {}


class ModeRequest(BaseModel):
    mode: RelationshipType


class NodeClickRequest(BaseModel):
    node_id: str


class HandleConnectRequest(BaseModel):
    source: str
    source_handle: str | None = None
    target: str
    target_handle: str | None = None


class ConnectState(BaseModel):
    state: str
    mode: RelationshipType | None = None
    source_id: str | None = None


class CanvasSnapshot(BaseModel):
    """Response containing everything needed to redraw a tree's canvas."""
    tree: Tree
    graph: DisplayGraph
    connect: ConnectState
    editing_member_id: str | None = None
    message: str | None = None


class TreeListResponse(BaseModel):
    trees: list[Tree]


# Request context

@dataclass
class RequestContext:
    user: User
    access_token: str | None
    store: RecordStore


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


def _store_for(access_token: str | None) -> RecordStore:
    if memory_store is not None:
        return memory_store
    return SupabaseStore(
        settings.supabase_url,
        settings.supabase_anon_key,
        access_token=access_token,
        client=http_client,
    )


async def require_user(authorization: str | None = Header(default=None)) -> RequestContext:
    """Resolve the signed-in user or answer 401 (client redirects to login)."""
    token = _bearer_token(authorization)
    user = await identity.get_current_user(token)
    if user is None:
        logger.warning("Request without a valid session")
        raise HTTPException(status_code=401, detail="Not signed in")
    return RequestContext(user=user, access_token=token, store=_store_for(token))


async def _load_canvas(tree_id: str, ctx: RequestContext) -> CanvasController:
    """Build a fresh canvas from the store and cache it, evicting the least recently used."""
    tree = await get_tree(ctx.store, tree_id)
    if tree is None or tree.owner_id != ctx.user.id:
        logger.warning(f"Tree {tree_id} not found for {ctx.user.id}")
        raise HTTPException(status_code=404, detail=f"Tree {tree_id} not found")

    canvas = await CanvasController.load(ctx.store, tree)
    key = (ctx.user.id, tree_id)
    open_canvases[key] = canvas
    open_canvases.move_to_end(key)
    while len(open_canvases) > settings.max_open_canvases:
        evicted, _ = open_canvases.popitem(last=False)
        logger.info(f"Evicted canvas {evicted[1]} of {evicted[0]}")
    return canvas


async def open_canvas(tree_id: str, ctx: RequestContext = Depends(require_user)) -> CanvasController:
    """Get the open canvas for a tree, loading it from the store on first use."""
    key = (ctx.user.id, tree_id)
    canvas = open_canvases.get(key)
    if canvas is None:
        return await _load_canvas(tree_id, ctx)
    open_canvases.move_to_end(key)
    canvas.store = ctx.store
    return canvas


async def reload_canvas(tree_id: str, ctx: RequestContext = Depends(require_user)) -> CanvasController:
    """Load a tree afresh: idle connect gesture, editor closed, records re-read."""
    return await _load_canvas(tree_id, ctx)


# Endpoints

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    logger.debug("Health check requested")
    return {
        "status": "healthy",
        "backend": "memory" if memory_store is not None else "supabase",
        "open_canvases": len(open_canvases),
    }


# ---- Auth ----

@app.post("/auth/login", response_model=AuthSession)
async def login(request: LoginRequest):
    """Sign in with email and password."""
    logger.info(f"Password sign-in for {request.email}")
    try:
        return await identity.sign_in_with_password(request.email, request.password)
    except AuthError as e:
        raise HTTPException(status_code=400, detail=e.message)


@app.post("/auth/magic-link")
async def magic_link(request: EmailRequest):
    """Email a sign-in link."""
    try:
        await identity.sign_in_with_link(request.email, f"{settings.app_url}/auth/callback")
    except AuthError as e:
        raise HTTPException(status_code=400, detail=e.message)
    return {"message": "Check your email for the magic link!"}


@app.get("/auth/callback")
async def auth_callback(
    code: str | None = None,
    code_verifier: str | None = None,
    next: str = Query(default="/tree"),
):
    """Exchange the code from an emailed link for a session."""
    if not code:
        raise HTTPException(status_code=400, detail="No authorization code provided")
    try:
        session = await identity.exchange_code(code, code_verifier)
    except AuthError as e:
        logger.error(f"Auth callback error: {e.message}")
        raise HTTPException(status_code=400, detail=e.message)
    return {"session": session, "next": next}


@app.post("/auth/forgot-password")
async def forgot_password(request: EmailRequest):
    """Email a password recovery link."""
    redirect_to = f"{settings.app_url}/auth/callback?next=/auth/reset-password"
    try:
        await identity.reset_password_for_email(request.email, redirect_to)
    except AuthError as e:
        raise HTTPException(status_code=400, detail=e.message)
    return {"message": "Check your email for a password reset link."}


@app.post("/auth/reset-password")
async def reset_password(request: PasswordRequest, ctx: RequestContext = Depends(require_user)):
    """Set a new password for the signed-in user."""
    if request.confirm_password is not None and request.confirm_password != request.password:
        raise HTTPException(status_code=400, detail="Passwords do not match.")
    try:
        user = await identity.update_password(ctx.access_token, request.password)
    except AuthError as e:
        raise HTTPException(status_code=400, detail=e.message)
    return {"message": "Password updated!", "user": user}


@app.post("/auth/signout")
async def sign_out(ctx: RequestContext = Depends(require_user)):
    try:
        await identity.sign_out(ctx.access_token)
    except AuthError as e:
        raise HTTPException(status_code=400, detail=e.message)
    return {"message": "Signed out"}


@app.get("/auth/me", response_model=User)
async def me(ctx: RequestContext = Depends(require_user)):
    return ctx.user


# ---- Trees ----

@app.get("/trees", response_model=TreeListResponse)
async def list_user_trees(ctx: RequestContext = Depends(require_user)):
    """List the user's trees, creating a default one on first visit."""
    trees = await ensure_default_tree(ctx.store, ctx.user.id)
    logger.info(f"Returning {len(trees)} trees for {ctx.user.id}")
    return TreeListResponse(trees=trees)


@app.post("/trees", response_model=Tree)
async def new_tree(request: TreeCreateRequest, ctx: RequestContext = Depends(require_user)):
    name = (request.name or "").strip()
    if name:
        return await create_tree(ctx.store, ctx.user.id, name)
    return await create_tree(ctx.store, ctx.user.id)


@app.get("/trees/{tree_id}", response_model=CanvasSnapshot)
async def get_canvas(canvas: CanvasController = Depends(reload_canvas)):
    return canvas.snapshot()


@app.patch("/trees/{tree_id}", response_model=CanvasSnapshot)
async def rename_tree(request: TreeRenameRequest, canvas: CanvasController = Depends(open_canvas)):
    if request.cancel:
        canvas.cancel_tree_name()
    else:
        await canvas.commit_tree_name(request.name)
    return canvas.snapshot()


@app.post("/trees/{tree_id}/graph", response_model=CanvasSnapshot)
async def layout_graph(request: LayoutRequest, canvas: CanvasController = Depends(open_canvas)):
    """Rebuild the display graph using the client's measured node geometry."""
    return canvas.snapshot(request.layout)


# ---- Members ----

@app.post("/trees/{tree_id}/members", response_model=CanvasSnapshot)
async def add_member(form: MemberForm, canvas: CanvasController = Depends(open_canvas)):
    await canvas.add_member(form.name, form.birth_year)
    return canvas.snapshot()


@app.patch("/trees/{tree_id}/members/{member_id}", response_model=CanvasSnapshot)
async def edit_member(member_id: str, form: MemberForm, canvas: CanvasController = Depends(open_canvas)):
    await canvas.edit_member(member_id, form.name, form.birth_year)
    return canvas.snapshot()


@app.delete("/trees/{tree_id}/members/{member_id}", response_model=CanvasSnapshot)
async def delete_member(member_id: str, canvas: CanvasController = Depends(open_canvas)):
    await canvas.delete_member(member_id)
    return canvas.snapshot()


@app.post("/trees/{tree_id}/nodes/{node_id}/position", response_model=CanvasSnapshot)
async def move_node(node_id: str, request: PositionRequest, canvas: CanvasController = Depends(open_canvas)):
    """Drag end: persist where a member node was dropped."""
    await canvas.reposition(node_id, request.x, request.y)
    return canvas.snapshot()


@app.post("/trees/{tree_id}/editor/{member_id}", response_model=CanvasSnapshot)
async def open_editor(member_id: str, canvas: CanvasController = Depends(open_canvas)):
    canvas.open_editor(member_id)
    return canvas.snapshot()


@app.delete("/trees/{tree_id}/editor", response_model=CanvasSnapshot)
async def close_editor(canvas: CanvasController = Depends(open_canvas)):
    canvas.close_editor()
    return canvas.snapshot()


# ---- Relationships ----

@app.delete("/trees/{tree_id}/edges/{edge_id}", response_model=CanvasSnapshot)
async def delete_edge(edge_id: str, canvas: CanvasController = Depends(open_canvas)):
    """Delete every relationship a display edge stands for (client has confirmed)."""
    deleted = await canvas.delete_edge(edge_id)
    message = f"Removed {len(deleted)} relationship(s)." if deleted else None
    return canvas.snapshot(message=message)


@app.post("/trees/{tree_id}/connect/mode", response_model=CanvasSnapshot)
async def press_connect_mode(request: ModeRequest, canvas: CanvasController = Depends(open_canvas)):
    canvas.press_toolbar(request.mode)
    return canvas.snapshot()


@app.post("/trees/{tree_id}/connect/click", response_model=CanvasSnapshot)
async def click_node(request: NodeClickRequest, canvas: CanvasController = Depends(open_canvas)):
    """Node click while connecting. A rejected link is reported, not raised."""
    try:
        await canvas.click_node(request.node_id)
    except LinkRejected as e:
        logger.warning(f"Link rejected: {e}")
        return canvas.snapshot(message=str(e))
    return canvas.snapshot()


@app.post("/trees/{tree_id}/connect/pane", response_model=CanvasSnapshot)
async def click_pane(canvas: CanvasController = Depends(open_canvas)):
    canvas.click_pane()
    return canvas.snapshot()


@app.post("/trees/{tree_id}/connect/handles", response_model=CanvasSnapshot)
async def connect_handles(request: HandleConnectRequest, canvas: CanvasController = Depends(open_canvas)):
    try:
        await canvas.connect_handles(
            request.source, request.source_handle, request.target, request.target_handle
        )
    except LinkRejected as e:
        logger.warning(f"Link rejected: {e}")
        return canvas.snapshot(message=str(e))
    return canvas.snapshot()


# ---- GEDCOM ----

@app.get("/trees/{tree_id}/gedcom")
async def export_gedcom(canvas: CanvasController = Depends(open_canvas)):
    """Download the tree as a GEDCOM file."""
    logger.info(f"Exporting tree {canvas.tree.id} as GEDCOM")
    return PlainTextResponse(
        canvas.export_gedcom(),
        headers={"Content-Disposition": f'attachment; filename="{canvas.tree.id}.ged"'},
    )


@app.post("/trees/{tree_id}/gedcom")
async def import_gedcom(file: UploadFile = File(...), canvas: CanvasController = Depends(open_canvas)):
    """Upload a GEDCOM file and add its people and links to the tree."""
    logger.info(f"Received GEDCOM file upload: {file.filename}")

    if not (file.filename or "").endswith(('.ged', '.gedcom')):
        logger.warning(f"Invalid file type: {file.filename}")
        raise HTTPException(status_code=400, detail="File must be a GEDCOM file (.ged or .gedcom)")

    content = await file.read()
    try:
        content_str = content.decode('utf-8')
    except UnicodeDecodeError:
        logger.info("UTF-8 decode failed, trying latin-1 encoding")
        content_str = content.decode('latin-1')

    result = await canvas.import_gedcom(content_str)
    return {"imported": import_summary(result), "canvas": canvas.snapshot()}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
