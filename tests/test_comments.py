"""
Quillnest Backend — Comment, Like and Share Tests
===================================================

What:  Comment CRUD permissions and the like/share toggles over HTTP, plus a
       unit test of the toggle's race handling with a mocked session.
"""

from unittest.mock import AsyncMock, MagicMock
from urllib.parse import parse_qs, urlparse
from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError

from quillnest.models.comment import Like
from quillnest.services.comment_service import CommentService, build_share_links
from quillnest.services.credential_store import Identity

PREFIX = "/api/v1/comment"


async def _post(client, account, title="Hello"):
    response = await client.post(
        "/api/v1/post/create-post",
        data={"title": title, "content": "Body"},
        headers=account.headers,
    )
    return response.json()["post"]


async def _comment(client, account, post_id, content="Nice post"):
    response = await client.post(f"{PREFIX}/add-comment/{post_id}", json={"content": content}, headers=account.headers)
    assert response.status_code == 201, response.text
    return response.json()["comment"]


class TestComments:

    @pytest.mark.asyncio
    async def test_add_and_view(self, client, create_user):
        ada = await create_user("ada")
        bob = await create_user("bob")
        post = await _post(client, ada)

        comment = await _comment(client, bob, post["id"], content="  trimmed  ")

        assert comment["content"] == "trimmed"
        assert comment["author"]["username"] == "bob"
        assert comment["post_id"] == post["id"]

        one = await client.get(f"{PREFIX}/view-comment/{comment['id']}", headers=ada.headers)
        assert one.json()["id"] == comment["id"]

    @pytest.mark.asyncio
    async def test_view_comments_oldest_first(self, client, create_user):
        ada = await create_user("ada")
        post = await _post(client, ada)
        for text in ("first", "second", "third"):
            await _comment(client, ada, post["id"], content=text)

        response = await client.get(f"{PREFIX}/view-comments/{post['id']}", headers=ada.headers)

        body = response.json()
        assert [c["content"] for c in body["comments"]] == ["first", "second", "third"]
        assert body["total_count"] == 3

    @pytest.mark.asyncio
    async def test_comment_on_unknown_post(self, client, create_user):
        ada = await create_user("ada")
        response = await client.post(
            f"{PREFIX}/add-comment/{uuid4()}",
            json={"content": "hello?"},
            headers=ada.headers,
        )
        assert response.status_code == 404
        assert response.json()["message"] == "Post not found"

    @pytest.mark.asyncio
    async def test_blank_comment_rejected(self, client, create_user):
        ada = await create_user("ada")
        post = await _post(client, ada)
        response = await client.post(f"{PREFIX}/add-comment/{post['id']}", json={"content": "   "}, headers=ada.headers)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_reading_comments_requires_authentication(self, client, create_user):
        ada = await create_user("ada")
        post = await _post(client, ada)
        response = await client.get(f"{PREFIX}/view-comments/{post['id']}")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_view_unknown_comment(self, client, create_user):
        ada = await create_user("ada")
        response = await client.get(f"{PREFIX}/view-comment/{uuid4()}", headers=ada.headers)
        assert response.status_code == 404
        assert response.json()["message"] == "Comment not found"

    @pytest.mark.asyncio
    async def test_only_author_updates(self, client, create_user):
        ada = await create_user("ada")
        bob = await create_user("bob")
        post = await _post(client, ada)
        comment = await _comment(client, bob, post["id"])

        denied = await client.put(
            f"{PREFIX}/update-comment/{comment['id']}",
            json={"content": "edited by the post author"},
            headers=ada.headers,
        )
        allowed = await client.put(
            f"{PREFIX}/update-comment/{comment['id']}",
            json={"content": "edited"},
            headers=bob.headers,
        )

        assert denied.status_code == 403
        assert allowed.status_code == 200
        assert allowed.json()["comment"]["content"] == "edited"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("deleter", ["comment_author", "post_author", "admin"])
    async def test_who_may_delete_a_comment(self, client, create_user, deleter):
        ada = await create_user("ada")
        bob = await create_user("bob")
        root = await create_user("root", email="root@x.com")
        post = await _post(client, ada)
        comment = await _comment(client, bob, post["id"])
        caller = {"comment_author": bob, "post_author": ada, "admin": root}[deleter]

        response = await client.delete(f"{PREFIX}/delete-comment/{comment['id']}", headers=caller.headers)

        assert response.status_code == 200
        assert response.json()["message"] == "Comment deleted successfully"
        gone = await client.get(f"{PREFIX}/view-comment/{comment['id']}", headers=ada.headers)
        assert gone.status_code == 404

    @pytest.mark.asyncio
    async def test_bystander_cannot_delete_a_comment(self, client, create_user):
        ada = await create_user("ada")
        bob = await create_user("bob")
        eve = await create_user("eve")
        post = await _post(client, ada)
        comment = await _comment(client, bob, post["id"])

        response = await client.delete(f"{PREFIX}/delete-comment/{comment['id']}", headers=eve.headers)

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_delete_all_comments_of_a_post(self, client, create_user):
        ada = await create_user("ada")
        bob = await create_user("bob")
        post = await _post(client, ada)
        other = await _post(client, ada, title="Other")
        await _comment(client, bob, post["id"])
        await _comment(client, ada, post["id"])
        await _comment(client, bob, other["id"])

        denied = await client.delete(f"{PREFIX}/delete-comments/{post['id']}", headers=bob.headers)
        allowed = await client.delete(f"{PREFIX}/delete-comments/{post['id']}", headers=ada.headers)

        assert denied.status_code == 403
        assert allowed.status_code == 200
        assert allowed.json()["deleted_count"] == 2
        remaining = await client.get(f"{PREFIX}/view-comments/{other['id']}", headers=ada.headers)
        assert remaining.json()["total_count"] == 1


class TestToggles:

    @pytest.mark.asyncio
    async def test_like_toggle(self, client, create_user):
        ada = await create_user("ada")
        bob = await create_user("bob")
        post = await _post(client, ada)

        first = (await client.post(f"{PREFIX}/like-post/{post['id']}", headers=bob.headers)).json()
        by_ada = (await client.post(f"{PREFIX}/like-post/{post['id']}", headers=ada.headers)).json()
        second = (await client.post(f"{PREFIX}/like-post/{post['id']}", headers=bob.headers)).json()

        assert (first["liked"], first["like_count"]) == (True, 1)
        assert (by_ada["liked"], by_ada["like_count"]) == (True, 2)
        assert (second["liked"], second["message"], second["like_count"]) == (False, "unliked", 1)

    @pytest.mark.asyncio
    async def test_like_unknown_post(self, client, create_user):
        ada = await create_user("ada")
        response = await client.post(f"{PREFIX}/like-post/{uuid4()}", headers=ada.headers)
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_share_toggle_returns_links(self, client, create_user):
        ada = await create_user("ada")
        post = await _post(client, ada, title="Tea & biscuits")

        shared = (await client.post(f"{PREFIX}/share-post/{post['id']}", headers=ada.headers)).json()
        unshared = (await client.post(f"{PREFIX}/share-post/{post['id']}", headers=ada.headers)).json()

        assert (shared["message"], shared["share_count"]) == ("shared", 1)
        assert (unshared["message"], unshared["share_count"]) == ("unshared", 0)
        query = parse_qs(urlparse(shared["share_links"]["twitter"]).query)
        assert query["url"] == [f"http://test/api/v1/post/get-post/{post['id']}"]
        assert query["text"] == ["Tea & biscuits"]


class TestShareLinks:

    def test_values_are_fully_encoded(self):
        links = build_share_links("http://q.test/api/v1/post/get-post/1?x=1&y=2", "A & B / C")

        assert "%26" in links.facebook
        facebook = parse_qs(urlparse(links.facebook).query)
        assert facebook["u"] == ["http://q.test/api/v1/post/get-post/1?x=1&y=2"]
        assert facebook["quote"] == ["A & B / C"]
        assert urlparse(links.linkedin).netloc == "www.linkedin.com"

    def test_post_url_strips_trailing_slash(self):
        service = CommentService(public_base_url="https://quillnest.example/")
        post_id = uuid4()
        assert service.post_url(post_id) == f"https://quillnest.example/api/v1/post/get-post/{post_id}"


class TestToggleRace:
    """The unique constraint decides when two identical toggles race."""

    def setup_method(self):
        self.service = CommentService()
        self.identity = Identity(subject_id=uuid4())
        self.post_id = uuid4()

    @staticmethod
    def _savepoint(exit_error=None):
        savepoint = MagicMock()
        savepoint.__aenter__ = AsyncMock(return_value=None)
        savepoint.__aexit__ = AsyncMock(side_effect=exit_error, return_value=False)
        return MagicMock(return_value=savepoint)

    @pytest.mark.asyncio
    async def test_existing_row_is_removed(self, mock_db_session):
        mock_db_session.execute.return_value.rowcount = 1
        mock_db_session.begin_nested = self._savepoint()

        result = await self.service._toggle(mock_db_session, Like, self.identity, self.post_id)

        assert result is False
        mock_db_session.add.assert_not_called()
        mock_db_session.begin_nested.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_row_is_inserted(self, mock_db_session):
        mock_db_session.execute.return_value.rowcount = 0
        mock_db_session.begin_nested = self._savepoint()

        result = await self.service._toggle(mock_db_session, Like, self.identity, self.post_id)

        assert result is True
        added = mock_db_session.add.call_args.args[0]
        assert isinstance(added, Like)
        assert (added.post_id, added.user_id) == (self.post_id, self.identity.subject_id)

    @pytest.mark.asyncio
    async def test_concurrent_insert_still_counts_as_liked(self, mock_db_session):
        mock_db_session.execute.return_value.rowcount = 0
        mock_db_session.begin_nested = self._savepoint(
            IntegrityError("INSERT INTO likes", {}, Exception("UNIQUE constraint failed"))
        )

        result = await self.service._toggle(mock_db_session, Like, self.identity, self.post_id)

        assert result is True
