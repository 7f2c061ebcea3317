"""
Quillnest Backend — Media & Mail Port Unit Tests (Mocked SDKs)
================================================================

What:  CloudinaryMediaService and SendGridMailService with the SDK calls
       patched out, plus the message builders and the fallback ports.
Why:   Tests must not make real API calls (needs credentials and network).
"""

import asyncio
import time
from typing import Dict
from unittest.mock import MagicMock, patch

import cloudinary.exceptions
import pytest
from httpx import ASGITransport, AsyncClient
from python_http_client.exceptions import HTTPError

from quillnest.exceptions import UpstreamServiceError, UpstreamTimeoutError, UpstreamUnavailableError
from quillnest.main import build_mail_service, build_media_service, create_app
from quillnest.services.mail_service import (
    ConsoleMailService,
    SendGridMailService,
    build_reset_email,
    build_verification_email,
    map_sendgrid_error,
)
from quillnest.services.media_service import (
    POST_MEDIA_FOLDER,
    CloudinaryMediaService,
    UnconfiguredMediaService,
    map_cloudinary_error,
)
from quillnest.services.resilience import UpstreamCaller


def _caller(service, mapper, attempts=2):
    return UpstreamCaller(service=service, error_mapper=mapper, timeout=2.0, max_attempts=attempts, min_wait=0, max_wait=0)


@pytest.fixture
def cloudinary_service():
    return CloudinaryMediaService(
        cloud_name="demo",
        api_key="key",
        api_secret="secret",
        caller=_caller("media", map_cloudinary_error),
    )


class TestCloudinaryMediaService:

    @pytest.mark.asyncio
    async def test_upload(self, cloudinary_service, sample_image_bytes):
        response = {
            "public_id": "quillnest/posts/abc",
            "secure_url": "https://res.cloudinary.com/demo/image/upload/abc.jpg",
            "resource_type": "image",
        }
        with patch("cloudinary.uploader.upload", return_value=response) as upload:
            stored = await cloudinary_service.upload(sample_image_bytes, "a.jpg", POST_MEDIA_FOLDER)

        assert stored.public_id == "quillnest/posts/abc"
        assert stored.url.startswith("https://res.cloudinary.com/")
        assert upload.call_args.kwargs["folder"] == POST_MEDIA_FOLDER
        assert upload.call_args.kwargs["resource_type"] == "image"

    @pytest.mark.asyncio
    async def test_incomplete_response_is_an_error(self, cloudinary_service, sample_image_bytes):
        with patch("cloudinary.uploader.upload", return_value={"public_id": "x"}):
            with pytest.raises(UpstreamServiceError, match="incomplete"):
                await cloudinary_service.upload(sample_image_bytes, "a.jpg", POST_MEDIA_FOLDER)

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, cloudinary_service, sample_image_bytes):
        ok = {"public_id": "p", "secure_url": "https://x/p", "resource_type": "raw"}
        with patch(
            "cloudinary.uploader.upload",
            side_effect=[cloudinary.exceptions.GeneralError("502 from upstream"), ok],
        ) as upload:
            stored = await cloudinary_service.upload(sample_image_bytes, "a.pdf", POST_MEDIA_FOLDER, resource_type="raw")

        assert upload.call_count == 2
        assert stored.resource_type == "raw"
        first, second = upload.call_args_list
        assert first.kwargs["public_id"] == second.kwargs["public_id"]
        assert first.kwargs["overwrite"] is True
        assert second.args[0].read() == sample_image_bytes

    @pytest.mark.asyncio
    async def test_each_upload_gets_its_own_public_id(self, cloudinary_service, sample_image_bytes):
        ok = {"public_id": "p", "secure_url": "https://x/p", "resource_type": "image"}
        with patch("cloudinary.uploader.upload", return_value=ok) as upload:
            await cloudinary_service.upload(sample_image_bytes, "a.jpg", POST_MEDIA_FOLDER)
            await cloudinary_service.upload(sample_image_bytes, "b.jpg", POST_MEDIA_FOLDER)

        first, second = upload.call_args_list
        assert first.kwargs["public_id"] != second.kwargs["public_id"]

    @pytest.mark.asyncio
    async def test_timed_out_attempts_overwrite_one_asset(self, sample_image_bytes):
        service = CloudinaryMediaService(
            cloud_name="demo",
            api_key="key",
            api_secret="secret",
            caller=UpstreamCaller(
                service="media", error_mapper=map_cloudinary_error,
                timeout=0.05, max_attempts=3, min_wait=0, max_wait=0,
            ),
        )
        host: Dict[str, bytes] = {}

        def slow_upload(file, **options):
            # finishes after the caller has given up on this attempt
            time.sleep(0.2)
            host[f"{options['folder']}/{options['public_id']}"] = file.read()
            return {"public_id": options["public_id"], "secure_url": "https://x/p"}

        with patch("cloudinary.uploader.upload", side_effect=slow_upload) as upload:
            with pytest.raises(UpstreamTimeoutError):
                await service.upload(sample_image_bytes, "a.jpg", POST_MEDIA_FOLDER)
            await asyncio.sleep(0.5)

        assert upload.call_count == 3
        assert list(host.values()) == [sample_image_bytes]

    @pytest.mark.asyncio
    async def test_rejected_upload_is_not_retried(self, cloudinary_service, sample_image_bytes):
        with patch("cloudinary.uploader.upload", side_effect=cloudinary.exceptions.BadRequest("bad file")) as upload:
            with pytest.raises(UpstreamServiceError) as exc_info:
                await cloudinary_service.upload(sample_image_bytes, "a.jpg", POST_MEDIA_FOLDER)

        assert upload.call_count == 1
        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("outcome", ["ok", "not found"])
    async def test_delete_succeeds(self, cloudinary_service, outcome):
        with patch("cloudinary.uploader.destroy", return_value={"result": outcome}) as destroy:
            await cloudinary_service.delete("quillnest/posts/abc", resource_type="raw")

        destroy.assert_called_once()
        assert destroy.call_args.kwargs["resource_type"] == "raw"

    @pytest.mark.asyncio
    async def test_refused_delete(self, cloudinary_service):
        with patch("cloudinary.uploader.destroy", return_value={"result": "error"}):
            with pytest.raises(UpstreamServiceError, match="refused"):
                await cloudinary_service.delete("quillnest/posts/abc")

    @pytest.mark.asyncio
    async def test_health_check_never_raises(self, cloudinary_service):
        with patch("cloudinary.api.ping", side_effect=cloudinary.exceptions.AuthorizationRequired("no")):
            assert await cloudinary_service.health_check() is False
        with patch("cloudinary.api.ping", return_value={"status": "ok"}):
            assert await cloudinary_service.health_check() is True

    def test_error_mapping(self):
        assert map_cloudinary_error(cloudinary.exceptions.RateLimited("slow down")).retryable is True
        assert map_cloudinary_error(ConnectionResetError()).retryable is True
        assert map_cloudinary_error(cloudinary.exceptions.NotAllowed("no")).retryable is False


class TestSendGridMailService:

    def _service(self, attempts=2):
        service = SendGridMailService(
            api_key="SG.test",
            sender="no-reply@quillnest.test",
            caller=_caller("mail", map_sendgrid_error, attempts=attempts),
        )
        service.client = MagicMock()
        return service

    @pytest.mark.asyncio
    async def test_send(self):
        service = self._service()
        service.client.send.return_value = MagicMock(status_code=202)

        await service.send("a@x.com", "Hello", "<p>Hi</p>")

        message = service.client.send.call_args.args[0]
        payload = message.get()
        assert payload["from"]["email"] == "no-reply@quillnest.test"
        assert payload["personalizations"][0]["to"][0]["email"] == "a@x.com"
        assert payload["subject"] == "Hello"

    @pytest.mark.asyncio
    async def test_server_error_is_retried_then_surfaces(self):
        service = self._service(attempts=2)
        service.client.send.side_effect = HTTPError(503, "Service Unavailable", b"{}", {})

        with pytest.raises(UpstreamUnavailableError):
            await service.send("a@x.com", "Hello", "<p>Hi</p>")

        assert service.client.send.call_count == 2

    @pytest.mark.asyncio
    async def test_bad_key_is_permanent(self):
        service = self._service(attempts=3)
        service.client.send.side_effect = HTTPError(401, "Unauthorized", b"{}", {})

        with pytest.raises(UpstreamServiceError) as exc_info:
            await service.send("a@x.com", "Hello", "<p>Hi</p>")

        assert exc_info.value.retryable is False
        assert service.client.send.call_count == 1

    @pytest.mark.parametrize("status, retryable", [(429, True), (500, True), (400, False), (403, False)])
    def test_error_mapping(self, status, retryable):
        assert map_sendgrid_error(HTTPError(status, "reason", b"", {})).retryable is retryable


class TestMessageBuilders:

    def test_verification_email_escapes_and_links(self):
        subject, body = build_verification_email("<ada>", "http://q.test/api/v1/verify/1/a&b")
        assert "Verify" in subject
        assert "&lt;ada&gt;" in body
        assert 'href="http://q.test/api/v1/verify/1/a&amp;b"' in body
        assert "30 minutes" in body

    def test_resent_verification_email_says_so(self):
        _, body = build_verification_email("ada", "http://q.test/x", resent=True)
        assert "new one" in body

    def test_reset_email(self):
        subject, body = build_reset_email("ada", "http://q.test/reset-password?token=abc", valid_minutes=15)
        assert "Reset" in subject
        assert "token=abc" in body
        assert "15 minutes" in body


class TestFallbackPorts:

    def test_builders_pick_fallbacks_without_credentials(self, test_settings):
        assert isinstance(build_media_service(test_settings), UnconfiguredMediaService)
        assert isinstance(build_mail_service(test_settings), ConsoleMailService)

    def test_builders_pick_real_ports_with_credentials(self, test_settings):
        configured = test_settings.model_copy(update={
            "cloudinary_cloud_name": "demo",
            "cloudinary_api_key": "key",
            "cloudinary_api_secret": "secret",
            "sendgrid_api_key": "SG.test",
        })
        assert isinstance(build_media_service(configured), CloudinaryMediaService)
        assert isinstance(build_mail_service(configured), SendGridMailService)

    @pytest.mark.asyncio
    async def test_console_mailer_logs_instead_of_sending(self, caplog):
        caplog.set_level("INFO", logger="quillnest.services.mail_service")
        await ConsoleMailService().send("a@x.com", "Hello", "<p>Hi</p>")
        assert "a@x.com" in caplog.text

    @pytest.mark.asyncio
    async def test_console_mailer_keeps_links_out_of_info_logs(self, caplog):
        _, body = build_reset_email("ada", "http://q.test/reset-password?token=s3cr3t-reset")

        caplog.set_level("INFO", logger="quillnest.services.mail_service")
        await ConsoleMailService().send("a@x.com", "Reset", body)
        assert "s3cr3t-reset" not in caplog.text

        caplog.clear()
        caplog.set_level("DEBUG", logger="quillnest.services.mail_service")
        await ConsoleMailService().send("a@x.com", "Reset", body)
        assert "s3cr3t-reset" in caplog.text

    @pytest.mark.asyncio
    async def test_unconfigured_media_host_rejects_attachments(
        self, test_settings, database, mail_service, sample_image_bytes,
    ):
        app = create_app(settings=test_settings, database=database, mail_service=mail_service)
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            await client.post(
                "/api/v1/signup",
                json={"username": "ada", "email": "ada@x.com", "password": "Secret123!"},
            )
            await client.post(mail_service.last_to("ada@x.com").link)
            token = (await client.post(
                "/api/v1/login", json={"email": "ada@x.com", "password": "Secret123!"},
            )).json()["token"]

            response = await client.post(
                "/api/v1/post/create-post",
                data={"title": "x", "content": "y"},
                files=[("files", ("a.jpg", sample_image_bytes, "image/jpeg"))],
                headers={"Authorization": f"Bearer {token}"},
            )

        assert response.status_code == 502
        assert response.json()["details"]["service"] == "media"
