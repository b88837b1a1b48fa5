"""FastMCP server: 6 consolidated tools and a status resource."""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
from typing import Annotated, Any, Literal

from fastmcp import FastMCP
from pydantic import Field

from ideario import __version__
from ideario.config import Config
from ideario.core.context import AppContext
from ideario.errors import AuthError, IdearioError, ValidationError
from ideario.models.attachment import UploadFile
from ideario.models.user import User

logger = logging.getLogger(__name__)


def _json(data: dict[str, Any]) -> str:
    return json.dumps(data, default=str, ensure_ascii=False)


def _ok(data: dict[str, Any]) -> str:
    """Return a versioned JSON success response."""
    return _json({**data, "_v": "1.0"})


def _err(msg: str, code: str = "error") -> str:
    """Return a versioned JSON error response."""
    return _json({"_v": "1.0", "error": msg, "code": code})


def _decode(content_base64: str) -> bytes:
    try:
        return base64.b64decode(content_base64, validate=True)
    except binascii.Error as e:
        raise ValidationError("content_base64 is not valid base64") from e


def create_server(config: Config) -> FastMCP:
    """Create FastMCP server exposing the idea workflow."""
    mcp = FastMCP("ideario", version=__version__)

    state: dict[str, Any] = {}
    _lock = asyncio.Lock()

    async def _init() -> AppContext:
        async with _lock:
            if "init_failed" in state:
                raise RuntimeError(f"Ideario init previously failed for {config.data_path}")
            if "ctx" not in state:
                try:
                    state["ctx"] = await AppContext.open(config)
                except Exception as e:
                    state["init_failed"] = True
                    logger.error("Failed to initialize workspace: %s", e)
                    raise RuntimeError(f"Ideario init failed: {config.data_path}") from e
        return state["ctx"]

    async def _user(ctx: AppContext, token: str | None) -> User:
        if not token or not token.strip():
            raise AuthError("token is required")
        return await ctx.auth.resolve(token.strip())

    # ── ideario_auth ──────────────────────────────────────────

    @mcp.tool()
    async def ideario_auth(
        action: Annotated[
            Literal["sign_up", "sign_in", "whoami", "profile", "update_profile", "upload_avatar"],
            Field(description="sign_up | sign_in | whoami | profile | update_profile | upload_avatar"),  # noqa: E501
        ],
        email: Annotated[str | None, Field(description="Email (sign_up, sign_in)")] = None,
        senha: Annotated[str | None, Field(description="Password (sign_up, sign_in)")] = None,
        nome: Annotated[str | None, Field(description="Display name (sign_up, update_profile)")] = None,  # noqa: E501
        token: Annotated[str | None, Field(description="Session token (whoami, update_profile, upload_avatar)")] = None,  # noqa: E501
        user_id: Annotated[str | None, Field(description="User ID (profile)")] = None,
        avatar_url: Annotated[
            str | None,
            Field(description="Avatar URL, empty to clear (update_profile)"),
        ] = None,
        nome_arquivo: Annotated[str | None, Field(description="Image file name (upload_avatar)")] = None,  # noqa: E501
        tipo_mime: Annotated[str | None, Field(description="Image MIME type (upload_avatar)")] = None,
        content_base64: Annotated[str | None, Field(description="Image content, base64 (upload_avatar)")] = None,  # noqa: E501
    ) -> str:
        """Create an account or sign in, and manage profiles. Returns the access token every other tool expects.

Actions: sign_up (register and sign in), sign_in (email + password), whoami (resolve a token), profile (any user by id), update_profile (your nome/avatar_url), upload_avatar (your picture, base64)."""  # noqa: E501
        ctx = await _init()
        try:
            if action == "sign_up":
                session = await ctx.auth.sign_up(email or "", senha or "", nome or "")
            elif action == "sign_in":
                session = await ctx.auth.sign_in(email or "", senha or "")
            elif action == "whoami":
                return _ok((await _user(ctx, token)).to_response())
            elif action == "profile":
                if not user_id:
                    return _err("user_id is required for profile", "validation_error")
                return _ok((await ctx.users.get_user(user_id)).to_response())
            elif action == "update_profile":
                user = await _user(ctx, token)
                updated = await ctx.users.update_profile(
                    user.id, nome=nome, avatar_url=avatar_url
                )
                return _ok(updated.to_response())
            elif action == "upload_avatar":
                if not nome_arquivo or not tipo_mime or not content_base64:
                    return _err(
                        "nome_arquivo, tipo_mime and content_base64 are required",
                        "validation_error",
                    )
                data = _decode(content_base64)
                user = await _user(ctx, token)
                updated = await ctx.users.upload_avatar(
                    user.id, UploadFile(name=nome_arquivo, mime_type=tipo_mime, data=data)
                )
                return _ok(updated.to_response())
            else:
                return _err(f"Unknown action: {action}")
        except IdearioError as e:
            return _err(str(e), e.code)

        return _ok({
            "user": session.user.to_response(),
            "access_token": session.access_token,
            "expires_at": session.expires_at,
        })

    # ── ideario_idea ──────────────────────────────────────────

    @mcp.tool()
    async def ideario_idea(
        action: Annotated[
            Literal["create", "get", "list", "transition", "assume", "stats", "tags"],
            Field(description="create | get | list | transition | assume | stats | tags"),
        ],
        token: Annotated[str | None, Field(description="Session token (create, transition, assume)")] = None,  # noqa: E501
        idea_id: Annotated[str | None, Field(description="Idea ID (get, transition, assume)")] = None,
        titulo: Annotated[str | None, Field(description="Title (create)")] = None,
        descricao: Annotated[str | None, Field(description="Description (create)")] = None,
        fonte: Annotated[str | None, Field(description="Where the idea came from (create)")] = None,
        segmento: Annotated[str | None, Field(description="Business segment (create)")] = None,
        impacto: Annotated[str | None, Field(description="Expected impact (create)")] = None,
        tags: Annotated[list[str] | None, Field(description="Tags (create)")] = None,
        status: Annotated[
            str | None,
            Field(description="Target status (transition) or status filter (list)"),
        ] = None,
        justificativa: Annotated[
            str | None,
            Field(description="Reason, recorded when archiving (transition)"),
        ] = None,
        search: Annotated[str | None, Field(description="Text search (list)")] = None,
        tag: Annotated[str | None, Field(description="Tag filter (list)")] = None,
        order: Annotated[
            Literal["recentes", "antigas", "votos", "comentarios"],
            Field(description="Ordering (list, default: recentes)"),
        ] = "recentes",
        detail: Annotated[
            str,
            Field(description="summary or full (list, default: summary)"),
        ] = "summary",
    ) -> str:
        """Submit ideas and move them through Geração → Em Definição → Pronta para Avaliação. Approval and archival from Pronta para Avaliação happen only through ideario_evaluate.

Actions: create, get, list (search/status/tag/order), transition (owner or author only), assume (take ownership), stats (count per status), tags (all tags)."""  # noqa: E501
        ctx = await _init()
        engine = ctx.lifecycle
        try:
            if action == "create":
                user = await _user(ctx, token)
                idea = await engine.create(
                    user,
                    titulo=titulo or "",
                    descricao=descricao or "",
                    fonte=fonte,
                    segmento=segmento,
                    impacto=impacto,
                    tags=tags,
                )
                return _ok(idea.to_response(detail="full"))

            if action == "get":
                if not idea_id:
                    return _err("idea_id is required for get", "validation_error")
                idea = await engine.get(idea_id)
                data = idea.to_response(detail="full")
                data["next_statuses"] = [s.value for s in engine.next_statuses(idea)]
                return _ok(data)

            if action == "list":
                ideas = await engine.list_ideas(search=search, status=status, tag=tag, order=order)
                items = [i.to_response(detail=detail) for i in ideas]
                return _ok({"count": len(items), "ideas": items})

            if action == "transition":
                if not idea_id or not status:
                    return _err("idea_id and status are required for transition", "validation_error")
                user = await _user(ctx, token)
                idea = await engine.transition(
                    idea_id, status, user, justificativa=justificativa
                )
                return _ok(idea.to_response(detail="full"))

            if action == "assume":
                if not idea_id:
                    return _err("idea_id is required for assume", "validation_error")
                user = await _user(ctx, token)
                idea = await engine.assume_ownership(idea_id, user)
                return _ok(idea.to_response(detail="full"))

            if action == "stats":
                return _ok({"counts": await engine.count_by_status()})

            if action == "tags":
                found = await engine.all_tags()
                return _ok({"count": len(found), "tags": found})
        except IdearioError as e:
            return _err(str(e), e.code)

        return _err(f"Unknown action: {action}")

    # ── ideario_evaluate ──────────────────────────────────────

    @mcp.tool()
    async def ideario_evaluate(
        action: Annotated[
            Literal["record", "list"],
            Field(description="record | list"),
        ],
        idea_id: Annotated[str, Field(description="Idea ID")],
        token: Annotated[str | None, Field(description="Session token (record)")] = None,
        nota_clareza_objetivos: Annotated[
            int | None, Field(description="Clarity of objectives 1-5 (record)")
        ] = None,
        nota_analise_negocio: Annotated[
            int | None, Field(description="Business analysis 1-5 (record)")
        ] = None,
        nota_viabilidade_tecnica: Annotated[
            int | None, Field(description="Technical feasibility 1-5 (record)")
        ] = None,
        decisao: Annotated[
            str | None, Field(description="Aprovada or Arquivada (record)")
        ] = None,
        justificativa: Annotated[
            str | None, Field(description="Required when decisao is Arquivada (record)")
        ] = None,
    ) -> str:
        """Evaluate an idea that is Pronta para Avaliação. The decision (Aprovada or Arquivada) becomes the idea's new status.

Actions: record (score and decide), list (previous evaluations, newest first)."""  # noqa: E501
        ctx = await _init()
        try:
            if action == "record":
                scores = (nota_clareza_objetivos, nota_analise_negocio, nota_viabilidade_tecnica)
                if any(s is None for s in scores) or not decisao:
                    return _err("all three scores and decisao are required", "validation_error")
                user = await _user(ctx, token)
                evaluation = await ctx.lifecycle.record_evaluation(
                    idea_id,
                    user,
                    nota_clareza_objetivos=nota_clareza_objetivos,
                    nota_analise_negocio=nota_analise_negocio,
                    nota_viabilidade_tecnica=nota_viabilidade_tecnica,
                    decisao=decisao,
                    justificativa=justificativa,
                )
                return _ok(evaluation.to_response())

            if action == "list":
                evaluations = await ctx.lifecycle.list_evaluations(idea_id)
                items = [e.to_response() for e in evaluations]
                return _ok({"count": len(items), "evaluations": items})
        except IdearioError as e:
            return _err(str(e), e.code)

        return _err(f"Unknown action: {action}")

    # ── ideario_engage ────────────────────────────────────────

    @mcp.tool()
    async def ideario_engage(
        action: Annotated[
            Literal["vote", "voted", "comment", "comments", "uncomment"],
            Field(description="vote | voted | comment | comments | uncomment"),
        ],
        idea_id: Annotated[str | None, Field(description="Idea ID")] = None,
        token: Annotated[str | None, Field(description="Session token")] = None,
        conteudo: Annotated[str | None, Field(description="Comment text (comment)")] = None,
        comment_id: Annotated[str | None, Field(description="Comment ID (uncomment)")] = None,
    ) -> str:
        """Vote on and discuss ideas. A vote toggles: voting again removes it.

Actions: vote (toggle), voted (has the caller voted), comment (add), comments (list, newest first), uncomment (delete your own comment)."""  # noqa: E501
        ctx = await _init()
        ledger = ctx.engagement
        try:
            if action == "uncomment":
                if not comment_id:
                    return _err("comment_id is required for uncomment", "validation_error")
                user = await _user(ctx, token)
                await ledger.delete_comment(comment_id, user)
                return _ok({"removed": "comment", "id": comment_id})

            if not idea_id:
                return _err(f"idea_id is required for {action}", "validation_error")

            if action == "vote":
                user = await _user(ctx, token)
                voted = await ledger.toggle_vote(idea_id, user.id)
                return _ok({
                    "idea_id": idea_id,
                    "voted": voted,
                    "votos": await ledger.vote_count(idea_id),
                })

            if action == "voted":
                user = await _user(ctx, token)
                return _ok({"idea_id": idea_id, "voted": await ledger.has_voted(idea_id, user.id)})

            if action == "comment":
                user = await _user(ctx, token)
                comment = await ledger.add_comment(idea_id, user, conteudo or "")
                return _ok(comment.to_response())

            if action == "comments":
                comments = await ledger.list_comments(idea_id)
                items = [c.to_response() for c in comments]
                return _ok({"count": len(items), "comments": items})
        except IdearioError as e:
            return _err(str(e), e.code)

        return _err(f"Unknown action: {action}")

    # ── ideario_definition ────────────────────────────────────

    @mcp.tool()
    async def ideario_definition(
        action: Annotated[
            Literal["get", "save", "checklist", "add_item", "check", "remove_item", "seed"],
            Field(description="get | save | checklist | add_item | check | remove_item | seed"),
        ],
        idea_id: Annotated[str | None, Field(description="Idea ID")] = None,
        token: Annotated[str | None, Field(description="Session token (save)")] = None,
        fields: Annotated[
            dict[str, Any] | None,
            Field(description="Definition fields to save (save)"),
        ] = None,
        item_id: Annotated[str | None, Field(description="Checklist item ID (check, remove_item)")] = None,  # noqa: E501
        categoria: Annotated[str | None, Field(description="Checklist category (add_item)")] = None,
        item: Annotated[str | None, Field(description="Checklist text (add_item)")] = None,
        concluido: Annotated[bool, Field(description="Done flag (check)")] = True,
    ) -> str:
        """Fill the definition document of an idea and track its completeness (percentage of the eight fields filled) and checklist.

Actions: get, save (upsert all eight fields), checklist (list items), add_item, check (mark done/undone), remove_item, seed (create the default checklist)."""  # noqa: E501
        ctx = await _init()
        tracker = ctx.definitions
        try:
            if action == "check":
                if not item_id:
                    return _err("item_id is required for check", "validation_error")
                entry = await tracker.set_checklist_item(item_id, concluido)
                return _ok(entry.to_response())

            if action == "remove_item":
                if not item_id:
                    return _err("item_id is required for remove_item", "validation_error")
                await tracker.delete_checklist_item(item_id)
                return _ok({"removed": "checklist_item", "id": item_id})

            if not idea_id:
                return _err(f"idea_id is required for {action}", "validation_error")

            if action == "get":
                return _ok((await tracker.get(idea_id)).to_response())

            if action == "save":
                user = await _user(ctx, token)
                doc = await tracker.save(idea_id, fields or {}, user)
                return _ok(doc.to_response())

            if action == "checklist":
                items = [i.to_response() for i in await tracker.list_checklist(idea_id)]
                return _ok({"count": len(items), "items": items})

            if action == "add_item":
                entry = await tracker.add_checklist_item(idea_id, categoria or "", item or "")
                return _ok(entry.to_response())

            if action == "seed":
                items = [i.to_response() for i in await tracker.create_default_checklist(idea_id)]
                return _ok({"count": len(items), "items": items})
        except IdearioError as e:
            return _err(str(e), e.code)

        return _err(f"Unknown action: {action}")

    # ── ideario_attachment ────────────────────────────────────

    @mcp.tool()
    async def ideario_attachment(
        action: Annotated[
            Literal["list", "upload", "delete", "url"],
            Field(description="list | upload | delete | url"),
        ],
        idea_id: Annotated[str | None, Field(description="Idea ID (list, upload)")] = None,
        token: Annotated[str | None, Field(description="Session token (upload, delete)")] = None,
        attachment_id: Annotated[str | None, Field(description="Attachment ID (delete, url)")] = None,  # noqa: E501
        nome_arquivo: Annotated[str | None, Field(description="File name (upload)")] = None,
        tipo_mime: Annotated[str | None, Field(description="MIME type (upload)")] = None,
        content_base64: Annotated[str | None, Field(description="File content, base64 (upload)")] = None,  # noqa: E501
    ) -> str:
        """Attach files (images, PDF, Office documents, text, CSV; up to the configured size) to an idea.

Actions: list, upload (base64 content), delete (uploader, owner or author), url (public link)."""  # noqa: E501
        ctx = await _init()
        manager = ctx.attachments
        try:
            if action == "list":
                if not idea_id:
                    return _err("idea_id is required for list", "validation_error")
                items = [
                    a.to_response(url=manager.public_url(a))
                    for a in await manager.list_attachments(idea_id)
                ]
                return _ok({"count": len(items), "attachments": items})

            if action == "upload":
                if not idea_id or not nome_arquivo or not tipo_mime or not content_base64:
                    return _err(
                        "idea_id, nome_arquivo, tipo_mime and content_base64 are required",
                        "validation_error",
                    )
                data = _decode(content_base64)
                user = await _user(ctx, token)
                attachment = await manager.upload(
                    idea_id, UploadFile(name=nome_arquivo, mime_type=tipo_mime, data=data), user
                )
                return _ok(attachment.to_response(url=manager.public_url(attachment)))

            if not attachment_id:
                return _err(f"attachment_id is required for {action}", "validation_error")

            if action == "delete":
                user = await _user(ctx, token)
                await manager.delete(attachment_id, user)
                return _ok({"removed": "attachment", "id": attachment_id})

            if action == "url":
                attachment = await manager.get(attachment_id)
                return _ok({"id": attachment_id, "url": manager.public_url(attachment)})
        except IdearioError as e:
            return _err(str(e), e.code)

        return _err(f"Unknown action: {action}")

    # ── Resources ─────────────────────────────────────────────

    @mcp.resource("ideario://status")
    async def ideario_resource_status() -> str:
        """Idea counts per status."""
        ctx = await _init()
        return _ok({"counts": await ctx.lifecycle.count_by_status()})

    return mcp
