"""Tests for session tokens, the local auth provider and permission rules."""

from __future__ import annotations

import time

import pytest

from ideario.auth.jwt import TokenExpiredError, TokenInvalidError, create_token, verify_token
from ideario.auth.permissions import (
    can_assume_ownership,
    can_delete_attachment,
    can_delete_comment,
    can_transition,
)
from ideario.auth.provider import SIGNED_IN, SIGNED_OUT, LocalAuthProvider
from ideario.core.users import UserDirectory
from ideario.errors import AuthError, FileTooLarge, NotFound, UnsupportedType, ValidationError
from ideario.events.types import EventType
from ideario.models.attachment import Attachment, UploadFile
from ideario.models.engagement import Comment
from ideario.models.idea import Idea, IdeaStatus

SECRET = "test-secret-key-do-not-use-in-production"


class TestJWT:
    """Test session token creation and validation."""

    def test_create_token_returns_expiry(self) -> None:
        token, expires_at = create_token("user-123", SECRET, exp_minutes=1)
        assert isinstance(token, str)
        assert expires_at > int(time.time())

    def test_verify_token_valid(self) -> None:
        token, _ = create_token("user-123", SECRET)
        payload = verify_token(token, SECRET)
        assert payload["sub"] == "user-123"
        assert "exp" in payload

    def test_verify_token_custom_expiry(self) -> None:
        token, _ = create_token("user-789", SECRET, exp_minutes=120)
        payload = verify_token(token, SECRET)
        assert payload["exp"] > int(time.time()) + 3600

    def test_verify_token_expired(self) -> None:
        token, _ = create_token("user-123", SECRET, exp_minutes=-1)
        with pytest.raises(TokenExpiredError):
            verify_token(token, SECRET)

    def test_verify_token_invalid_signature(self) -> None:
        token, _ = create_token("user-123", SECRET)
        with pytest.raises(TokenInvalidError):
            verify_token(token, "another-secret-key-that-is-long-enough")

    def test_verify_token_malformed(self) -> None:
        with pytest.raises(TokenInvalidError):
            verify_token("not.a.valid.jwt", SECRET)

    def test_token_errors_are_auth_errors(self) -> None:
        assert issubclass(TokenExpiredError, AuthError)
        assert issubclass(TokenInvalidError, AuthError)


class TestPermissions:
    """Test authorization predicates."""

    @pytest.fixture
    def idea(self) -> Idea:
        return Idea(id="i1", titulo="t", descricao="d", autor_id="author", owner_id="owner")

    def test_transition_owner_or_author(self, idea: Idea) -> None:
        assert can_transition("author", idea)
        assert can_transition("owner", idea)
        assert not can_transition("someone", idea)

    def test_assume_ownership(self, idea: Idea) -> None:
        assert not can_assume_ownership(idea)
        unowned = idea.model_copy(update={"owner_id": None})
        assert can_assume_ownership(unowned)
        approved = unowned.model_copy(update={"status": IdeaStatus.APROVADA})
        assert not can_assume_ownership(approved)

    def test_delete_comment_author_only(self) -> None:
        comment = Comment(ideia_id="i1", autor_id="writer", conteudo="oi")
        assert can_delete_comment("writer", comment)
        assert not can_delete_comment("author", comment)

    def test_delete_attachment(self, idea: Idea) -> None:
        attachment = Attachment(
            ideia_id="i1",
            nome_arquivo="a.pdf",
            storage_path="anexos/i1/a.pdf",
            tipo_mime="application/pdf",
            tamanho_bytes=1,
            uploaded_by="uploader",
        )
        for user in ("uploader", "owner", "author"):
            assert can_delete_attachment(user, attachment, idea)
        assert not can_delete_attachment("someone", attachment, idea)


# --- Local provider ---


@pytest.fixture
def provider(gateway) -> LocalAuthProvider:
    return LocalAuthProvider(gateway, secret=SECRET, ttl_minutes=30)


async def test_sign_up_and_sign_in(provider: LocalAuthProvider):
    session = await provider.sign_up("Ana@Example.com ", "segredo1", "Ana")
    assert session.user.email == "ana@example.com"
    assert await provider.get_session() == session

    await provider.sign_out()
    assert await provider.get_session() is None

    again = await provider.sign_in("ana@example.com", "segredo1")
    assert again.user.id == session.user.id


async def test_password_is_hashed(provider: LocalAuthProvider, gateway):
    session = await provider.sign_up("ana@example.com", "segredo1", "Ana")
    record = await gateway.get("usuarios", session.user.id)
    assert record["senha_hash"] != "segredo1"
    assert record["senha_hash"].startswith("$pbkdf2-sha256$")


async def test_sign_in_wrong_password(provider: LocalAuthProvider):
    await provider.sign_up("ana@example.com", "segredo1", "Ana")
    with pytest.raises(AuthError, match="Invalid email or password"):
        await provider.sign_in("ana@example.com", "errada")
    with pytest.raises(AuthError, match="Invalid email or password"):
        await provider.sign_in("bruno@example.com", "segredo1")


async def test_sign_up_duplicate_email(provider: LocalAuthProvider):
    await provider.sign_up("ana@example.com", "segredo1", "Ana")
    with pytest.raises(AuthError):
        await provider.sign_up("ANA@example.com", "outra123", "Ana 2")


@pytest.mark.parametrize(
    ("email", "senha", "nome"),
    [("sem-arroba", "segredo1", "Ana"), ("ana@example.com", "123", "Ana"), ("a@b.c", "segredo1", " ")],
)
async def test_sign_up_validation(provider: LocalAuthProvider, email, senha, nome):
    with pytest.raises(ValidationError):
        await provider.sign_up(email, senha, nome)


async def test_resolve_token(provider: LocalAuthProvider):
    session = await provider.sign_up("ana@example.com", "segredo1", "Ana")
    user = await provider.resolve(session.access_token)
    assert user.id == session.user.id

    with pytest.raises(AuthError):
        await provider.resolve("garbage")

    stranger, _ = create_token("ghost", SECRET)
    with pytest.raises(AuthError):
        await provider.resolve(stranger)


async def test_session_change_notifications(provider: LocalAuthProvider):
    seen = []

    async def listener(event, session):
        seen.append((event, session.user.nome if session else None))

    unsubscribe = provider.on_session_change(listener)
    await provider.sign_up("ana@example.com", "segredo1", "Ana")
    await provider.sign_out()
    unsubscribe()
    await provider.sign_in("ana@example.com", "segredo1")

    assert seen == [(SIGNED_IN, "Ana"), (SIGNED_OUT, None)]


async def test_failing_listener_does_not_break_sign_in(provider: LocalAuthProvider):
    async def broken(event, session):
        raise RuntimeError("boom")

    provider.on_session_change(broken)
    session = await provider.sign_up("ana@example.com", "segredo1", "Ana")
    assert session.user.nome == "Ana"


async def test_expired_session_is_dropped(gateway):
    provider = LocalAuthProvider(gateway, secret=SECRET, ttl_minutes=-1)
    await provider.sign_up("ana@example.com", "segredo1", "Ana")
    assert await provider.get_session() is None


# --- Profiles ---


@pytest.fixture
def directory(gateway, objects, bus) -> UserDirectory:
    return UserDirectory(gateway, objects, bus, bucket="avatars")


def _png(name: str = "eu.png", size: int = 64) -> UploadFile:
    return UploadFile(name=name, mime_type="image/png", data=b"\x89PNG" + b"0" * size)


async def test_get_user(provider: LocalAuthProvider, directory: UserDirectory):
    session = await provider.sign_up("ana@example.com", "segredo1", "Ana")
    user = await directory.get_user(session.user.id)
    assert user.email == "ana@example.com"
    assert user.avatar_url is None

    with pytest.raises(NotFound):
        await directory.get_user("ghost")


async def test_update_profile_changes_only_given_fields(
    provider: LocalAuthProvider, directory: UserDirectory, events
):
    session = await provider.sign_up("ana@example.com", "segredo1", "Ana")
    user = await directory.update_profile(session.user.id, nome="  Ana Souza ")
    assert user.nome == "Ana Souza"
    assert user.updated_at is not None

    user = await directory.update_profile(session.user.id, avatar_url="https://cdn/ana.png")
    assert (user.nome, user.avatar_url) == ("Ana Souza", "https://cdn/ana.png")

    cleared = await directory.update_profile(session.user.id, avatar_url="")
    assert cleared.avatar_url is None
    assert events[-1] == (
        EventType.USER_PROFILE_UPDATED,
        {"user_id": session.user.id, "fields": ["avatar_url"]},
    )


async def test_update_profile_validation(provider: LocalAuthProvider, directory: UserDirectory):
    session = await provider.sign_up("ana@example.com", "segredo1", "Ana")
    with pytest.raises(ValidationError):
        await directory.update_profile(session.user.id, nome="   ")
    with pytest.raises(ValidationError):
        await directory.update_profile(session.user.id)
    with pytest.raises(NotFound):
        await directory.update_profile("ghost", nome="Fantasma")


async def test_upload_avatar_overwrites_in_place(
    provider: LocalAuthProvider, directory: UserDirectory, objects
):
    session = await provider.sign_up("ana@example.com", "segredo1", "Ana")
    user_id = session.user.id

    first = await directory.upload_avatar(user_id, _png(size=8))
    second = await directory.upload_avatar(user_id, _png(size=16))

    path = f"avatars/{user_id}.png"
    assert first.avatar_url == second.avatar_url == objects.public_url("avatars", path)
    assert await objects.list_objects("avatars") == [path]
    assert len(await objects.download_object("avatars", path)) == 20
    assert (await directory.get_user(user_id)).avatar_url == second.avatar_url


async def test_upload_avatar_replaces_other_extension(
    provider: LocalAuthProvider, directory: UserDirectory, objects
):
    session = await provider.sign_up("ana@example.com", "segredo1", "Ana")
    user_id = session.user.id

    await directory.upload_avatar(user_id, _png())
    jpeg = UploadFile(name="eu.JPG", mime_type="image/jpeg", data=b"\xff\xd8")
    user = await directory.upload_avatar(user_id, jpeg)

    assert user.avatar_url.endswith(f"avatars/{user_id}.jpg")
    assert await objects.list_objects("avatars") == [f"avatars/{user_id}.jpg"]


async def test_upload_avatar_rejections(
    provider: LocalAuthProvider, directory: UserDirectory, objects
):
    session = await provider.sign_up("ana@example.com", "segredo1", "Ana")
    pdf = UploadFile(name="cv.pdf", mime_type="application/pdf", data=b"%PDF")
    with pytest.raises(UnsupportedType):
        await directory.upload_avatar(session.user.id, pdf)
    with pytest.raises(FileTooLarge):
        await directory.upload_avatar(session.user.id, _png(size=directory.max_bytes))
    with pytest.raises(NotFound):
        await directory.upload_avatar("ghost", _png())
    assert await objects.list_objects("avatars") == []
